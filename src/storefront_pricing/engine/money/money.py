from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Union

from storefront_pricing.util.errors import CurrencyMismatchError

ZERO = Decimal("0")
HUNDRED = Decimal("100")

Number = Union[Decimal, int]


def to_decimal(value: object) -> Decimal:
    """Coerce config or wire values to Decimal; binary floats are refused."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a monetary amount")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        return Decimal(value.strip())
    raise TypeError(f"unsupported amount type {type(value).__name__}; use Decimal or str")


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency", self.currency.strip().upper())

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(ZERO, currency)

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor: Number) -> "Money":
        if not isinstance(factor, (Decimal, int)) or isinstance(factor, bool):
            raise TypeError("Money can only be multiplied by Decimal or int")
        return Money(self.amount * factor, self.currency)

    __rmul__ = __mul__

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount >= other.amount

    def percent(self, rate: Number) -> "Money":
        return Money(self.amount * to_decimal(rate) / HUNDRED, self.currency)

    def min(self, other: "Money") -> "Money":
        return self if self <= other else other

    def max(self, other: "Money") -> "Money":
        return self if self >= other else other

    def clamp_floor(self) -> "Money":
        if self.amount < ZERO:
            return Money.zero(self.currency)
        return self

    @property
    def is_zero(self) -> bool:
        return self.amount == ZERO

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


def sum_money(values: Iterable[Money], currency: str) -> Money:
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total
