from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from storefront_pricing.app.models.config import ExchangeRate
from storefront_pricing.engine.money.money import HUNDRED, Money
from storefront_pricing.util.errors import MissingExchangeRate

ONE = Decimal("1")


@dataclass(frozen=True)
class Conversion:
    money: Money
    rate: Decimal
    used_inverse: bool = False


class CurrencyConverter:
    """Convert amounts over directed exchange-rate edges.

    The latest active edge effective at ``now`` wins. Without a direct edge
    the reciprocal of the inverse edge is used and the conversion is flagged
    ``used_inverse``; the inverse edge's markup is applied on top of the
    reciprocal so the surcharge keeps its direction.
    """

    def __init__(self, rates: Sequence[ExchangeRate]) -> None:
        self.rates = list(rates)

    def _latest(self, from_currency: str, to_currency: str, now: datetime) -> Optional[ExchangeRate]:
        edges = [
            rate
            for rate in self.rates
            if rate.from_currency == from_currency and rate.to_currency == to_currency and rate.is_valid_at(now)
        ]
        if not edges:
            return None
        return max(edges, key=lambda rate: rate.effective_from)

    def rate(self, from_currency: str, to_currency: str, now: datetime) -> Tuple[Decimal, bool]:
        """Effective rate from ``from_currency`` to ``to_currency`` and whether the inverse edge was used."""
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return ONE, False
        direct = self._latest(from_currency, to_currency, now)
        if direct is not None:
            return direct.effective_rate, False
        inverse = self._latest(to_currency, from_currency, now)
        if inverse is None:
            raise MissingExchangeRate(from_currency, to_currency)
        rate = ONE / inverse.rate
        if inverse.markup_percent is not None:
            rate = rate * (ONE + inverse.markup_percent / HUNDRED)
        return rate, True

    def convert(self, money: Money, to_currency: str, now: datetime) -> Conversion:
        rate, used_inverse = self.rate(money.currency, to_currency, now)
        return Conversion(money=Money(money.amount * rate, to_currency), rate=rate, used_inverse=used_inverse)
