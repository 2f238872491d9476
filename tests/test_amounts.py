from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from jobledger.config import PricingPolicy
from jobledger.payments import award_points, deposit_charge, deposit_expected, final_due, money


def test_deposit_rounding_example() -> None:
    assert deposit_expected(Decimal(12345), PricingPolicy()) == Decimal(4000)


def test_deposit_exact_step() -> None:
    assert deposit_expected(Decimal(10000), PricingPolicy()) == Decimal(3000)


def test_deposit_custom_policy() -> None:
    policy = PricingPolicy(deposit_percent=Decimal(50), deposit_round_step=Decimal(100))
    assert deposit_expected(Decimal(999), policy) == Decimal(500)


@given(st.integers(min_value=1, max_value=10_000_000))
def test_deposit_is_rounded_up_to_step(amount: int) -> None:
    policy = PricingPolicy()
    expected = deposit_expected(Decimal(amount), policy)
    raw = Decimal(amount) * policy.deposit_percent / 100
    assert expected % policy.deposit_round_step == 0
    assert raw <= expected < raw + policy.deposit_round_step


def test_deposit_charge() -> None:
    assert deposit_charge(Decimal(4000), Decimal(0)) == Decimal(4000)
    assert deposit_charge(Decimal(4000), Decimal(1500)) == Decimal(2500)
    # Fully paid falls back to the whole deposit.
    assert deposit_charge(Decimal(4000), Decimal(4000)) == Decimal(4000)


def test_final_due() -> None:
    assert final_due(Decimal(12345), Decimal(4000)) == Decimal(8345)
    assert final_due(Decimal(12345), Decimal(20000)) == Decimal(0)


@pytest.mark.parametrize(
    ("amount", "points"),
    [(Decimal(0), 0), (Decimal(99), 0), (Decimal(100), 1), (Decimal("2599.50"), 25), (Decimal(-5), 0)],
)
def test_award_points(amount: Decimal, points: int) -> None:
    assert award_points(amount, PricingPolicy()) == points


def test_money() -> None:
    assert money(Decimal("4000.00")) == 4000
    assert isinstance(money(Decimal("4000.00")), int)
    assert money(Decimal("12.5")) == 12.5
    assert money(None) is None
