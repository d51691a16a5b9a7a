"""Tests for deal value helpers."""

from decimal import Decimal

from commission_engine.calculators import (
    calculate_deal_values,
    calculate_hours_info,
    calculate_retainer_value,
    calculate_rollover_hours,
)


class TestRetainerValue:
    def test_monthly_times_duration(self):
        assert calculate_retainer_value(Decimal("5000"), 12) == Decimal("60000")

    def test_retainer_deal_values(self):
        values = calculate_deal_values("retainer", value=0, monthly_value=2500, contract_duration_months=6)

        assert values.total_value == Decimal("15000")
        assert values.monthly_value == Decimal("2500")
        assert values.contract_duration_months == 6

    def test_project_keeps_value(self):
        values = calculate_deal_values("project", value="80000", monthly_value=1000, contract_duration_months=3)

        assert values.total_value == Decimal("80000")
        assert values.monthly_value is None
        assert values.contract_duration_months is None


class TestHours:
    def test_hours_info_without_rollover(self):
        info = calculate_hours_info(40, 10, False, previous_rollover_hours=5)

        assert info.hours_remaining == Decimal("30")
        assert info.usage_percentage == Decimal("25")

    def test_hours_info_with_rollover(self):
        info = calculate_hours_info(40, 10, True, previous_rollover_hours=10)

        assert info.hours_remaining == Decimal("40")
        assert info.usage_percentage == Decimal("20")

    def test_usage_capped_at_100(self):
        info = calculate_hours_info(10, 15, False)

        assert info.hours_remaining == Decimal("0")
        assert info.usage_percentage == Decimal("100")

    def test_rollover_hours(self):
        assert calculate_rollover_hours(40, Decimal("25.5"), True) == Decimal("14.5")

    def test_no_rollover_when_disabled(self):
        assert calculate_rollover_hours(40, 0, False) == Decimal("0")

    def test_no_negative_rollover(self):
        assert calculate_rollover_hours(40, 50, True) == Decimal("0")
