from decimal import Decimal

import pytest

from storefront_pricing.engine.money.money import Money, sum_money, to_decimal
from storefront_pricing.util.errors import CurrencyMismatchError


def test_money_adds_within_currency() -> None:
    total = Money("10.10", "usd") + Money(Decimal("0.20"), "USD")
    assert total == Money(Decimal("10.30"), "USD")
    assert total.currency == "USD"


def test_money_refuses_cross_currency_arithmetic() -> None:
    with pytest.raises(CurrencyMismatchError):
        Money("1", "USD") + Money("1", "EUR")
    with pytest.raises(CurrencyMismatchError):
        Money("1", "USD") < Money("1", "EUR")


def test_money_refuses_binary_floats() -> None:
    with pytest.raises(TypeError):
        Money(0.1, "USD")
    with pytest.raises(TypeError):
        to_decimal(True)


def test_percent_and_clamps() -> None:
    amount = Money("80", "USD")
    assert amount.percent(Decimal("12.5")).amount == Decimal("10")
    assert Money("-3", "USD").clamp_floor().is_zero
    assert amount.min(Money("50", "USD")).amount == Decimal("50")
    assert amount.max(Money("50", "USD")).amount == Decimal("80")


def test_sum_money_starts_from_zero() -> None:
    assert sum_money([], "EUR") == Money.zero("EUR")
    assert sum_money([Money("1.5", "EUR"), Money("2", "EUR")], "EUR").amount == Decimal("3.5")
