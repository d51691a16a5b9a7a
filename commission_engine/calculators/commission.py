"""
Commission Calculator

Fixed-percentage and progressive (tiered) commission schedules.
Intermediate math is unrounded Decimal; quantize_money / quantize_rate are
applied only when a value is persisted or rendered.
"""

from decimal import ROUND_HALF_UP, Decimal

from ..models import CommissionAmount

HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half up."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    """Round a percentage to 4 decimal places, half up."""
    return value.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


def fixed_commission(base, percentage) -> Decimal:
    """base * percentage / 100"""
    return to_decimal(base) * to_decimal(percentage) / HUNDRED


def tiered_commission(base, tiers) -> Decimal:
    """
    Apply a progressive schedule to slices of the base value.

    Tiers are walked in ascending min_value order. Each tier whose lower
    bound the base reaches takes min(remaining, max - min) at its own rate;
    a tier with max_value None is unbounded. Stops once nothing remains.
    """
    base = to_decimal(base)
    remaining = base
    total = Decimal("0")

    for tier in sorted(tiers, key=lambda t: to_decimal(t.min_value)):
        if remaining <= 0:
            break

        tier_min = to_decimal(tier.min_value)
        if base < tier_min:
            continue

        if tier.max_value is None:
            applicable = remaining
        else:
            applicable = min(remaining, to_decimal(tier.max_value) - tier_min)

        if applicable > 0:
            total += applicable * to_decimal(tier.percentage) / HUNDRED
            remaining -= applicable

    return total


def effective_percentage(amount, base) -> Decimal:
    """Blended rate: amount / base * 100, or 0 for a zero base."""
    base = to_decimal(base)
    if base == 0:
        return Decimal("0")
    return to_decimal(amount) / base * HUNDRED


class CommissionCalculator:
    """Computes the commission a rule yields on a base value."""

    def calculate(self, base, rule, tiers=None) -> CommissionAmount:
        """
        Priority order:
        1. Tiered rule with at least one tier -> tier schedule, blended rate
        2. Flat percentage -> fixed formula
        3. Nothing configured -> zero
        """
        base = to_decimal(base)
        if tiers is None:
            tiers = getattr(rule, "tiers", None) or []

        if rule.is_tiered and tiers:
            amount = tiered_commission(base, tiers)
            return CommissionAmount(
                amount=amount,
                percentage=effective_percentage(amount, base),
                is_tiered=True,
            )

        if rule.percentage:
            percentage = to_decimal(rule.percentage)
            return CommissionAmount(amount=fixed_commission(base, percentage), percentage=percentage)

        return CommissionAmount(amount=Decimal("0"), percentage=to_decimal(rule.percentage or 0))
