from __future__ import annotations

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import List, Optional, Sequence

from storefront_pricing.app.models.config import CurrencyConfig
from storefront_pricing.engine.canonical.models import RoundingMode
from storefront_pricing.engine.money.money import Money
from storefront_pricing.util.errors import RoundingPrecisionViolation

_MODES = {
    RoundingMode.STANDARD: ROUND_HALF_UP,
    RoundingMode.UP: ROUND_CEILING,
    RoundingMode.DOWN: ROUND_FLOOR,
}


def quantum(decimal_places: int) -> Decimal:
    return Decimal(1).scaleb(-decimal_places)


def round_amount(
    value: Decimal,
    decimal_places: int = 2,
    mode: RoundingMode = RoundingMode.STANDARD,
    increment: Optional[Decimal] = None,
) -> Decimal:
    step = quantum(decimal_places)
    if mode == RoundingMode.TO_INCREMENT:
        if increment is None or increment <= 0:
            raise ValueError("to_increment rounding requires a positive increment")
        increments = (value / increment).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return (increments * increment).quantize(step, rounding=ROUND_HALF_UP)
    return value.quantize(step, rounding=_MODES[mode])


def round_money(
    money: Money,
    decimal_places: int = 2,
    mode: RoundingMode = RoundingMode.STANDARD,
    increment: Optional[Decimal] = None,
) -> Money:
    rounded = Money(round_amount(money.amount, decimal_places, mode, increment), money.currency)
    assert_precision(rounded, decimal_places)
    return rounded


def round_for(money: Money, currency: CurrencyConfig) -> Money:
    return round_money(money, currency.decimal_places, currency.rounding, currency.rounding_increment)


def assert_precision(money: Money, decimal_places: int) -> None:
    if __debug__:
        if money.amount != money.amount.quantize(quantum(decimal_places)):
            raise RoundingPrecisionViolation(
                f"{money} has more than {decimal_places} decimal places"
            )


def split_rounded(total: Decimal, parts: Sequence[Decimal], decimal_places: int = 2) -> List[Decimal]:
    """Round ``parts`` to precision so they add up exactly to the rounded ``total``.

    Largest-remainder split: every part is floored, then the leftover steps go
    to the parts that lost the most (earlier parts first on ties).
    """
    if not parts:
        return []
    step = quantum(decimal_places)
    floors = [part.quantize(step, rounding=ROUND_FLOOR) for part in parts]
    leftover = int((total - sum(floors, Decimal("0"))) / step)
    order = sorted(range(len(parts)), key=lambda index: (floors[index] - parts[index], index))
    if leftover < 0:
        order = list(reversed(order))
    for position in range(abs(leftover)):
        index = order[position % len(order)]
        floors[index] += step if leftover > 0 else -step
    return floors
