from datetime import datetime, timezone
from decimal import Decimal

import pytest

from storefront_pricing.app.models.config import CurrencyConfig, ExchangeRate
from storefront_pricing.engine.canonical.models import RoundingMode
from storefront_pricing.engine.currency.converter import CurrencyConverter
from storefront_pricing.engine.currency.rounding import assert_precision, round_for, round_money, split_rounded
from storefront_pricing.engine.money.money import Money
from storefront_pricing.util.errors import MissingExchangeRate, RoundingPrecisionViolation

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def test_direct_rate_applies_markup(store_config) -> None:
    conversion = CurrencyConverter(store_config.exchange_rates).convert(Money("100", "USD"), "EUR", NOW)

    assert conversion.money == Money(Decimal("91.80"), "EUR")
    assert conversion.used_inverse is False


def test_inverse_edge_is_an_explicit_fallback(store_config) -> None:
    conversion = CurrencyConverter(store_config.exchange_rates).convert(Money("100", "USD"), "GBP", NOW)

    assert conversion.money.amount == Decimal("80")
    assert conversion.used_inverse is True


def test_missing_rate_is_an_error(store_config) -> None:
    with pytest.raises(MissingExchangeRate):
        CurrencyConverter(store_config.exchange_rates).convert(Money("100", "USD"), "JPY", NOW)


def test_same_currency_converts_at_par(store_config) -> None:
    conversion = CurrencyConverter(store_config.exchange_rates).convert(Money("12.34", "USD"), "usd", NOW)
    assert conversion.money == Money("12.34", "USD")
    assert conversion.rate == Decimal("1")


def test_latest_effective_edge_wins() -> None:
    rates = [
        ExchangeRate(from_currency="USD", to_currency="CAD", rate=Decimal("1.30"), effective_from=datetime(2024, 1, 1, tzinfo=timezone.utc)),
        ExchangeRate(from_currency="USD", to_currency="CAD", rate=Decimal("1.35"), effective_from=datetime(2025, 1, 1, tzinfo=timezone.utc)),
        ExchangeRate(from_currency="USD", to_currency="CAD", rate=Decimal("1.40"), effective_from=datetime(2026, 1, 1, tzinfo=timezone.utc)),
        ExchangeRate(from_currency="USD", to_currency="CAD", rate=Decimal("9"), effective_from=datetime(2025, 2, 1, tzinfo=timezone.utc), is_active=False),
    ]
    converter = CurrencyConverter(rates)
    assert converter.rate("USD", "CAD", NOW) == (Decimal("1.35"), False)


@pytest.mark.parametrize(
    "amount, places, mode, increment, expected",
    [
        ("2.345", 2, RoundingMode.STANDARD, None, "2.35"),
        ("2.344", 2, RoundingMode.STANDARD, None, "2.34"),
        ("2.341", 2, RoundingMode.UP, None, "2.35"),
        ("2.349", 2, RoundingMode.DOWN, None, "2.34"),
        ("2.37", 2, RoundingMode.TO_INCREMENT, Decimal("0.05"), "2.35"),
        ("2.38", 2, RoundingMode.TO_INCREMENT, Decimal("0.05"), "2.40"),
        ("123.5", 0, RoundingMode.STANDARD, None, "124"),
    ],
)
def test_rounding_modes(amount, places, mode, increment, expected) -> None:
    rounded = round_money(Money(amount, "USD"), places, mode, increment)
    assert rounded.amount == Decimal(expected)
    assert str(rounded.amount) == expected


def test_round_for_uses_currency_settings() -> None:
    chf = CurrencyConfig(code="CHF", rounding="to_increment", rounding_increment=Decimal("0.05"))
    assert round_for(Money("10.03", "CHF"), chf).amount == Decimal("10.05")


def test_increment_mode_requires_an_increment() -> None:
    with pytest.raises(ValueError):
        round_money(Money("1", "USD"), 2, RoundingMode.TO_INCREMENT, None)


def test_precision_guard() -> None:
    assert_precision(Money("1.23", "USD"), 2)
    with pytest.raises(RoundingPrecisionViolation):
        assert_precision(Money("1.234", "USD"), 2)


@pytest.mark.parametrize(
    "total, parts, expected",
    [
        ("0.01", ["0.005", "0.005"], ["0.01", "0.00"]),
        ("10.00", ["3.333", "3.333", "3.334"], ["3.33", "3.33", "3.34"]),
        ("1.00", ["0.996"], ["1.00"]),
        ("0.00", [], []),
    ],
)
def test_split_rounded_adds_up_to_the_total(total, parts, expected) -> None:
    split = split_rounded(Decimal(total), [Decimal(part) for part in parts])

    assert split == [Decimal(value) for value in expected]
    assert sum(split, Decimal("0")) == Decimal(total)
