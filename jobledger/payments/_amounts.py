"""
Money rules for payment stages. Pure functions over Decimal.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

from jobledger.config import PricingPolicy


def deposit_expected(session_amount: Decimal, policy: PricingPolicy) -> Decimal:
    """
    ceil(amount * percent / 100 / step) * step

        >>> deposit_expected(Decimal(12345), PricingPolicy())
        Decimal('4000')
    """
    raw = session_amount * policy.deposit_percent / 100
    steps = (raw / policy.deposit_round_step).to_integral_value(rounding=ROUND_CEILING)
    return steps * policy.deposit_round_step


def deposit_charge(expected: Decimal, paid_total: Decimal) -> Decimal:
    """
    What is left of the deposit.

    Note: A non-positive remainder falls back to the full expected deposit.
    """
    remaining = max(Decimal(0), expected - paid_total)
    return remaining if remaining > 0 else expected


def final_due(session_amount: Decimal, deposit_paid_total: Decimal) -> Decimal:
    return max(Decimal(0), session_amount - deposit_paid_total)


def award_points(amount: Decimal, policy: PricingPolicy) -> int:
    """floor(amount / points_rate); non-positive amounts earn nothing."""
    if amount <= 0:
        return 0
    return int((amount / policy.points_rate).to_integral_value(rounding=ROUND_FLOOR))


def money(value: Decimal | None) -> int | float | None:
    """JSON number for a Decimal amount; integral amounts stay ints."""
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


__all__ = (
    "deposit_expected",
    "deposit_charge",
    "final_due",
    "award_points",
    "money",
)
