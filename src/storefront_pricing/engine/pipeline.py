from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from storefront_pricing.app.models.config import CurrencyConfig, StoreConfig, Zone
from storefront_pricing.engine.canonical.models import (
    AppliedDiscount,
    LineAllocation,
    PricingContext,
    PricingResult,
    TaxLine,
)
from storefront_pricing.engine.currency.converter import CurrencyConverter
from storefront_pricing.engine.currency.rounding import round_for, split_rounded
from storefront_pricing.engine.discounts.eligibility import UsageSnapshot
from storefront_pricing.engine.discounts.resolver import DiscountResolution, DiscountResolver
from storefront_pricing.engine.money.money import ZERO, Money
from storefront_pricing.engine.shipping.calculator import ShippingCalculator, ShippingQuote, package_weight
from storefront_pricing.engine.tax.calculator import TaxCalculator, TaxResult
from storefront_pricing.engine.zones.matcher import match_zone
from storefront_pricing.util.errors import NoShippingRateAvailable, ZoneNotFound
from storefront_pricing.util.logging import get_logger, log_event

logger = get_logger(__name__)

TAX_ZONE_NOT_FOUND = "TAX_ZONE_NOT_FOUND"
SHIPPING_ZONE_NOT_FOUND = "SHIPPING_ZONE_NOT_FOUND"
INVERSE_EXCHANGE_RATE = "INVERSE_EXCHANGE_RATE"


@dataclass
class ShippingOutcome:
    zone: Optional[Zone]
    cost: Money
    discount: Money
    applied: Tuple[AppliedDiscount, ...] = ()
    waived: bool = False
    taxable: bool = True


class _Finisher:
    """Convert base-currency amounts to the display currency and round them."""

    def __init__(self, rate: Decimal, currency: CurrencyConfig) -> None:
        self.rate = rate
        self.currency = currency

    def money(self, amount: Money) -> Money:
        return round_for(Money(amount.amount * self.rate, self.currency.code), self.currency)

    def _split(self, total: Decimal, values: Sequence[Decimal]) -> List[Decimal]:
        return split_rounded(total, [value * self.rate for value in values], self.currency.decimal_places)

    def applied(self, discounts: Sequence[AppliedDiscount], total: Money) -> List[AppliedDiscount]:
        """Convert applied discounts so their amounts, and each one's line allocations, add up to ``total``."""
        amounts = self._split(total.amount, [discount.amount for discount in discounts])
        finished: List[AppliedDiscount] = []
        for discount, amount in zip(discounts, amounts):
            allocations = self._split(amount, [allocation.amount for allocation in discount.line_allocations])
            finished.append(
                discount.model_copy(
                    update={
                        "amount": amount,
                        "line_allocations": tuple(
                            LineAllocation(line_id=allocation.line_id, amount=value)
                            for allocation, value in zip(discount.line_allocations, allocations)
                        ),
                    }
                )
            )
        return finished

    def tax_lines(self, lines: Sequence[TaxLine], total: Money) -> List[TaxLine]:
        amounts = self._split(total.amount, [line.amount for line in lines])
        return [line.model_copy(update={"amount": amount}) for line, amount in zip(lines, amounts)]


class PricingPipeline:
    """Price one cart against one store configuration snapshot.

    Steps run in a fixed order: subtotal, discounts, shipping, tax on the
    discounted lines and the shipping charge, conversion to the requested
    currency and a single rounding pass. The run never mutates its inputs, so
    pricing an unchanged context twice yields identical results. Fatal step
    errors (no shipping rate, missing exchange rate) propagate unchanged;
    missing zones only add a warning.
    """

    def __init__(self, config: StoreConfig) -> None:
        self.config = config
        self.resolver = DiscountResolver(currency=config.base_currency, stacking_policy=config.stacking_policy)
        self.taxes = TaxCalculator(config)
        self.shipping = ShippingCalculator(config)
        self.converter = CurrencyConverter(config.exchange_rates)

    def _zone(self, concern: str, context: PricingContext, warnings: List[str]) -> Optional[Zone]:
        if concern == "tax":
            zone = match_zone(context.tax_address, self.config.tax_zones)
        else:
            zone = match_zone(context.shipping_address, self.config.shipping_zones)
        if zone is None:
            error = ZoneNotFound(concern)
            warnings.append(TAX_ZONE_NOT_FOUND if concern == "tax" else SHIPPING_ZONE_NOT_FOUND)
            log_event(logger, "zone_not_found", cart_id=context.cart_id, concern=concern, message=str(error))
        return zone

    def _ship(
        self,
        context: PricingContext,
        resolution: DiscountResolution,
        order_amount: Money,
        warnings: List[str],
    ) -> ShippingOutcome:
        none = Money.zero(order_amount.currency)
        if context.shipping_method is None:
            return ShippingOutcome(zone=None, cost=none, discount=none)
        zone = self._zone("shipping", context, warnings)
        if zone is None:
            return ShippingOutcome(zone=None, cost=none, discount=none)
        method = self.config.shipping_method(context.shipping_method)
        if method is None:
            raise NoShippingRateAvailable(context.shipping_method, zone.id, "unknown shipping method")
        weight = package_weight(context)
        formula = self.shipping.base_cost(context, zone, method, weight, order_amount)
        cost = self.shipping.compute(
            context, zone, method, weight, order_amount, waived=resolution.waives_shipping
        )
        reduction, applied = self.resolver.resolve_shipping(cost, resolution.shipping_discounts)
        return ShippingOutcome(
            zone=zone,
            cost=cost - reduction,
            discount=reduction,
            applied=applied,
            waived=formula.amount > ZERO and cost.is_zero,
            taxable=method.is_taxable,
        )

    def price(self, context: PricingContext, usage: Optional[UsageSnapshot] = None) -> PricingResult:
        base_currency = self.config.base_currency
        warnings: List[str] = []

        line_amounts: Dict[str, Money] = {
            line.line_id: Money(line.line_total, base_currency) for line in context.lines
        }
        subtotal = Money.zero(base_currency)
        for amount in line_amounts.values():
            subtotal = subtotal + amount

        resolution = self.resolver.resolve(context, self.config.discounts, usage)
        if resolution.coupon_rejection is not None:
            log_event(
                logger,
                "coupon_rejected",
                cart_id=context.cart_id,
                coupon_code=resolution.coupon_rejection.coupon_code,
                reason=resolution.coupon_rejection.reason,
            )
        discounted = {
            line_id: (amount - resolution.line_discounts.get(line_id, Money.zero(base_currency))).clamp_floor()
            for line_id, amount in line_amounts.items()
        }
        merchandise = (subtotal - resolution.total).clamp_floor()

        shipping = self._ship(context, resolution, merchandise, warnings)

        tax_zone = self._zone("tax", context, warnings)
        tax: TaxResult = self.taxes.compute(
            context,
            tax_zone,
            self.taxes.categorize(context),
            discounted,
            shipping.cost,
            shipping_taxable=shipping.taxable,
        )

        exchange_rate: Optional[Decimal] = None
        rate = Decimal("1")
        if context.currency != base_currency:
            rate, used_inverse = self.converter.rate(base_currency, context.currency, context.now)
            exchange_rate = rate
            if used_inverse:
                warnings.append(INVERSE_EXCHANGE_RATE)
        finish = _Finisher(rate, self.config.currency(context.currency))

        subtotal_out = finish.money(subtotal)
        discount_out = finish.money(resolution.total)
        tax_out = finish.money(tax.total)
        shipping_out = finish.money(shipping.cost)
        shipping_discount_out = finish.money(shipping.discount)
        # Rounded components are summed and the total rounded once more, never reconverted.
        grand_total = round_for(
            subtotal_out - discount_out + tax_out + shipping_out, finish.currency
        )

        result = PricingResult(
            cart_id=context.cart_id,
            currency=context.currency,
            subtotal=subtotal_out.amount,
            discount_total=discount_out.amount,
            applied_discounts=tuple(
                finish.applied(resolution.applied, discount_out)
                + finish.applied(shipping.applied, shipping_discount_out)
            ),
            tax_total=tax_out.amount,
            tax_breakdown=tuple(finish.tax_lines(tax.breakdown, tax_out)),
            shipping_total=shipping_out.amount,
            shipping_discount_total=shipping_discount_out.amount,
            grand_total=grand_total.amount,
            tax_zone_id=tax_zone.id if tax_zone else None,
            shipping_zone_id=shipping.zone.id if shipping.zone else None,
            shipping_method=context.shipping_method,
            shipping_waived=resolution.waives_shipping or shipping.waived,
            exchange_rate=exchange_rate,
            warnings=tuple(warnings),
            coupon_rejection=resolution.coupon_rejection,
        )
        log_event(
            logger,
            "pricing_completed",
            cart_id=context.cart_id,
            store_id=self.config.store_id,
            currency=result.currency,
            grand_total=result.grand_total,
            discounts=[discount.discount_id for discount in result.applied_discounts],
            warnings=list(result.warnings),
        )
        return result

    def shipping_options(self, context: PricingContext, usage: Optional[UsageSnapshot] = None) -> List[ShippingQuote]:
        """Every method available to the cart's shipping zone, in base currency."""
        zone = match_zone(context.shipping_address, self.config.shipping_zones)
        if zone is None:
            return []
        resolution = self.resolver.resolve(context, self.config.discounts, usage)
        subtotal = Money(sum((line.line_total for line in context.lines), ZERO), self.config.base_currency)
        merchandise = (subtotal - resolution.total).clamp_floor()
        return self.shipping.quote_options(
            context, zone, package_weight(context), merchandise, waived=resolution.waives_shipping
        )
