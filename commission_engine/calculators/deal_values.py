"""
Deal value helpers: retainer totals and retainer hours.
"""

from dataclasses import dataclass
from decimal import Decimal

HUNDRED = Decimal("100")


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def calculate_retainer_value(monthly_value, contract_duration_months: int) -> Decimal:
    """Total value of a retainer: monthly_value * contract_duration_months."""
    return _dec(monthly_value) * int(contract_duration_months)


@dataclass
class DealValues:
    monthly_value: Decimal | None
    contract_duration_months: int | None
    total_value: Decimal


def calculate_deal_values(
    deal_type: str,
    value,
    monthly_value=None,
    contract_duration_months: int | None = None,
) -> DealValues:
    """Resolve the stored value fields for a deal of either type."""
    if deal_type == "retainer" and monthly_value is not None and contract_duration_months:
        return DealValues(
            monthly_value=_dec(monthly_value),
            contract_duration_months=contract_duration_months,
            total_value=calculate_retainer_value(monthly_value, contract_duration_months),
        )

    # Project deals carry their total directly
    return DealValues(monthly_value=None, contract_duration_months=None, total_value=_dec(value))


@dataclass
class HoursInfo:
    monthly_hours: Decimal
    hours_consumed: Decimal
    hours_rollover: bool
    hours_remaining: Decimal
    usage_percentage: Decimal


def calculate_hours_info(monthly_hours, hours_consumed, hours_rollover: bool, previous_rollover_hours=0) -> HoursInfo:
    """Hours available and used for a retainer in the current period."""
    monthly_hours = _dec(monthly_hours)
    hours_consumed = _dec(hours_consumed)
    total_available = monthly_hours + _dec(previous_rollover_hours) if hours_rollover else monthly_hours

    remaining = max(Decimal("0"), total_available - hours_consumed)
    if total_available > 0:
        usage = min(HUNDRED, hours_consumed / total_available * HUNDRED)
    else:
        usage = Decimal("0")

    return HoursInfo(
        monthly_hours=monthly_hours,
        hours_consumed=hours_consumed,
        hours_rollover=hours_rollover,
        hours_remaining=remaining,
        usage_percentage=usage,
    )


def calculate_rollover_hours(monthly_hours, hours_consumed, hours_rollover: bool) -> Decimal:
    """Unused hours that would carry into the next period."""
    if not hours_rollover:
        return Decimal("0")
    return max(Decimal("0"), _dec(monthly_hours) - _dec(hours_consumed or 0))
