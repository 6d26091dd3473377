from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, TypeVar

from storefront_pricing.app.models.config import ShippingMethod, ShippingRate, StoreConfig, Zone
from storefront_pricing.engine.canonical.models import PricingContext
from storefront_pricing.engine.money.money import ZERO, Money
from storefront_pricing.util.errors import NoShippingRateAvailable

T = TypeVar("T")


def package_weight(context: PricingContext) -> Decimal:
    return sum((line.weight for line in context.lines), ZERO)


def _first(*values: Optional[T]) -> Optional[T]:
    for value in values:
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class ShippingQuote:
    method_id: str
    name: Optional[str]
    zone_id: str
    cost: Money
    sort_order: int = 0

    @property
    def is_free(self) -> bool:
        return self.cost.is_zero


class ShippingCalculator:
    """Evaluate the rate formula of a (zone, method) pair.

    ``cost = base + weight * per_weight + items * per_item
    + order_amount * percentage / 100 + handling``, with rate fields falling
    back to the method's defaults, clamped to the configured minimum and
    maximum cost. A met free-shipping threshold (rate, then method, then
    store) or a discount waiver zeroes the cost.
    """

    def __init__(self, config: StoreConfig) -> None:
        self.config = config

    def rate_for(self, zone: Zone, method: ShippingMethod) -> Optional[ShippingRate]:
        rates = [
            rate
            for rate in self.config.shipping_rates
            if rate.is_active and rate.zone_id == zone.id and rate.method_id == method.id
        ]
        if not rates:
            return None
        return sorted(rates, key=lambda rate: rate.sort_order)[0]

    def threshold_for(self, rate: ShippingRate, method: ShippingMethod) -> Optional[Decimal]:
        return _first(
            rate.free_shipping_threshold,
            method.free_shipping_threshold,
            self.config.free_shipping_threshold,
        )

    def _check_bounds(
        self, zone: Zone, method: ShippingMethod, rate: ShippingRate, weight: Decimal, order_amount: Decimal
    ) -> None:
        min_weight = _first(rate.min_weight, method.min_weight)
        max_weight = _first(rate.max_weight, method.max_weight)
        min_order = _first(rate.min_order_amount, method.min_order_amount)
        max_order = _first(rate.max_order_amount, method.max_order_amount)
        if min_weight is not None and weight < min_weight:
            raise NoShippingRateAvailable(method.id, zone.id, f"package weight {weight} below {min_weight}")
        if max_weight is not None and weight > max_weight:
            raise NoShippingRateAvailable(method.id, zone.id, f"package weight {weight} above {max_weight}")
        if min_order is not None and order_amount < min_order:
            raise NoShippingRateAvailable(method.id, zone.id, f"order amount {order_amount} below {min_order}")
        if max_order is not None and order_amount > max_order:
            raise NoShippingRateAvailable(method.id, zone.id, f"order amount {order_amount} above {max_order}")

    def base_cost(
        self,
        context: PricingContext,
        zone: Zone,
        method: ShippingMethod,
        weight: Decimal,
        order_amount: Money,
    ) -> Money:
        """Formula cost before thresholds and waivers."""
        if not method.is_active:
            raise NoShippingRateAvailable(method.id, zone.id, "method is inactive")
        rate = self.rate_for(zone, method)
        if rate is None:
            raise NoShippingRateAvailable(method.id, zone.id, "no rate configured for zone")
        self._check_bounds(zone, method, rate, weight, order_amount.amount)

        currency = order_amount.currency
        cost = Money(rate.base_rate, currency)
        per_weight = _first(rate.per_weight_rate, method.per_weight_rate)
        if per_weight is not None:
            cost = cost + Money(weight * per_weight, currency)
        per_item = _first(rate.per_item_rate, method.per_item_rate)
        if per_item is not None:
            cost = cost + Money(per_item, currency) * context.item_count
        percentage = _first(rate.percentage_rate, method.percentage_rate)
        if percentage is not None:
            cost = cost + order_amount.percent(percentage)
        handling = _first(rate.handling_fee, method.handling_fee)
        if handling is not None:
            cost = cost + Money(handling, currency)

        minimum = _first(rate.minimum_cost, method.minimum_cost)
        maximum = _first(rate.maximum_cost, method.maximum_cost)
        if minimum is not None:
            cost = cost.max(Money(minimum, currency))
        if maximum is not None:
            cost = cost.min(Money(maximum, currency))
        return cost.clamp_floor()

    def compute(
        self,
        context: PricingContext,
        zone: Zone,
        method: ShippingMethod,
        weight: Decimal,
        order_amount: Money,
        *,
        waived: bool = False,
    ) -> Money:
        cost = self.base_cost(context, zone, method, weight, order_amount)
        if waived:
            return Money.zero(cost.currency)
        rate = self.rate_for(zone, method)
        threshold = self.threshold_for(rate, method) if rate is not None else None
        if threshold is not None and order_amount.amount >= threshold:
            return Money.zero(cost.currency)
        return cost

    def quote_options(
        self,
        context: PricingContext,
        zone: Zone,
        weight: Decimal,
        order_amount: Money,
        *,
        waived: bool = False,
    ) -> List[ShippingQuote]:
        quotes: List[ShippingQuote] = []
        for method in self.config.shipping_methods:
            if not method.is_active:
                continue
            try:
                cost = self.compute(context, zone, method, weight, order_amount, waived=waived)
            except NoShippingRateAvailable:
                continue
            quotes.append(
                ShippingQuote(
                    method_id=method.id,
                    name=method.name,
                    zone_id=zone.id,
                    cost=cost,
                    sort_order=method.sort_order,
                )
            )
        return sorted(quotes, key=lambda quote: (quote.sort_order, quote.cost.amount, quote.method_id))
