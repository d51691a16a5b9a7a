"""
Calculators Package

Pure calculation components used by the closing pipeline and billing jobs.
"""

from .commission import (
    CommissionCalculator,
    effective_percentage,
    fixed_commission,
    quantize_money,
    quantize_rate,
    tiered_commission,
)
from .deal_values import (
    calculate_deal_values,
    calculate_hours_info,
    calculate_retainer_value,
    calculate_rollover_hours,
)

__all__ = [
    "CommissionCalculator",
    "fixed_commission",
    "tiered_commission",
    "effective_percentage",
    "quantize_money",
    "quantize_rate",
    "calculate_retainer_value",
    "calculate_deal_values",
    "calculate_hours_info",
    "calculate_rollover_hours",
]
