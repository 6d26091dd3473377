"""Per-type discount amount calculators.

Every calculator shares one contract: given the discount, the pricing context
and the current per-line base (the amount still discountable on each line),
return the amount to take off each line. Amounts are unrounded and a line's
allocation never exceeds its base.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Sequence

from storefront_pricing.app.models.config import Discount
from storefront_pricing.engine.canonical.models import DiscountType, LineItem, PricingContext
from storefront_pricing.engine.discounts.eligibility import eligible_lines, matched_trade_ins
from storefront_pricing.engine.money.money import ZERO, Money

Allocations = Dict[str, Money]
Bases = Mapping[str, Money]
Calculator = Callable[[Discount, PricingContext, Bases], Allocations]


def _currency(bases: Bases) -> str:
    for base in bases.values():
        return base.currency
    # ISO 4217 "no currency"; only reached for an empty cart.
    return "XXX"


def total_of(allocations: Allocations, currency: str) -> Money:
    total = Money.zero(currency)
    for amount in allocations.values():
        total = total + amount
    return total


def allocate_proportionally(total: Money, weights: Mapping[str, Money]) -> Allocations:
    """Split ``total`` across lines by weight; the last line absorbs the remainder."""
    positive = [(line_id, weight) for line_id, weight in weights.items() if weight.amount > ZERO]
    if not positive or total.amount <= ZERO:
        return {}
    weight_sum = sum((weight.amount for _, weight in positive), ZERO)
    allocations: Allocations = {}
    allocated = ZERO
    for index, (line_id, weight) in enumerate(positive):
        if index == len(positive) - 1:
            share = total.amount - allocated
        else:
            share = total.amount * weight.amount / weight_sum
        share = min(share, weight.amount)
        allocations[line_id] = Money(share, total.currency)
        allocated += share
    return allocations


def _bases_for(lines: Sequence[LineItem], bases: Bases) -> Dict[str, Money]:
    return {line.line_id: bases[line.line_id] for line in lines if line.line_id in bases}


def _percent_of(lines: Sequence[LineItem], bases: Bases, percent: Decimal) -> Allocations:
    allocations: Allocations = {}
    for line_id, base in _bases_for(lines, bases).items():
        amount = base.percent(percent).min(base).clamp_floor()
        if amount.amount > ZERO:
            allocations[line_id] = amount
    return allocations


def percentage_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    return _percent_of(eligible_lines(discount, context), bases, discount.value)


def fixed_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    weights = _bases_for(eligible_lines(discount, context), bases)
    available = total_of(weights, _currency(bases))
    return allocate_proportionally(Money(discount.value, _currency(bases)).min(available), weights)


def _free_units(
    lines: Sequence[LineItem], bases: Bases, units: int, percent: Decimal
) -> Allocations:
    allocations: Allocations = {}
    remaining = units
    for line in sorted(lines, key=lambda item: (item.unit_price, item.line_id)):
        if remaining <= 0:
            break
        free = min(line.quantity, remaining)
        remaining -= free
        base = bases.get(line.line_id)
        if base is None:
            continue
        amount = Money(line.unit_price * free, base.currency).percent(percent).min(base)
        if amount.amount > ZERO:
            allocations[line.line_id] = amount
    return allocations


def buy_x_get_y_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    buy = discount.buy_quantity or 1
    get = discount.get_quantity or 1
    lines = eligible_lines(discount, context)
    if discount.get_product_ids:
        buy_units = sum(line.quantity for line in lines if line.product_id not in discount.get_product_ids)
        reward_lines = [
            line
            for line in context.lines
            if line.product_id in discount.get_product_ids
            and line.product_id not in discount.excluded_product_ids
        ]
        free = (buy_units // buy) * get
    else:
        units = sum(line.quantity for line in lines)
        reward_lines = lines
        free = (units // (buy + get)) * get
    return _free_units(reward_lines, bases, free, discount.get_discount_percent)


def bundle_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    components: Dict[str, LineItem] = {}
    quantities: Dict[str, int] = {}
    for line in context.lines:
        if line.product_id not in discount.bundle_product_ids:
            continue
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
        current = components.get(line.product_id)
        if current is None or line.unit_price < current.unit_price:
            components[line.product_id] = line
    if not components or set(components) != set(discount.bundle_product_ids):
        return {}
    bundles = min(quantities.values())
    component_values: Dict[str, Money] = {}
    for line in components.values():
        base = bases.get(line.line_id)
        if base is None:
            continue
        component_values[line.line_id] = Money(line.unit_price * bundles, base.currency).min(base)
    if discount.bundle_discount_value is not None:
        return {
            line_id: value.percent(discount.bundle_discount_value)
            for line_id, value in component_values.items()
            if value.amount > ZERO
        }
    available = total_of(component_values, _currency(bases))
    requested = Money(discount.value * bundles, _currency(bases))
    return allocate_proportionally(requested.min(available), component_values)


def volume_tiers_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    lines = eligible_lines(discount, context)
    quantity = sum(line.quantity for line in lines)
    reached = [tier for tier in discount.volume_tiers if tier.min_quantity <= quantity]
    if not reached:
        return {}
    tier = max(reached, key=lambda item: (item.min_quantity, item.discount_percent))
    return _percent_of(lines, bases, tier.discount_percent)


def trade_in_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    trade_ins = len(matched_trade_ins(discount, context))
    targets: List[LineItem] = [
        line
        for line in eligible_lines(discount, context)
        if not discount.trade_in_target_product_ids or line.product_id in discount.trade_in_target_product_ids
    ]
    units = min(trade_ins, sum(line.quantity for line in targets))
    if units <= 0:
        return {}
    credit = discount.trade_in_credit_per_item if discount.trade_in_credit_per_item is not None else discount.value
    weights = _bases_for(targets, bases)
    requested = Money(credit * units, _currency(bases))
    return allocate_proportionally(requested.min(total_of(weights, _currency(bases))), weights)


def referral_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    percent = discount.referral_new_customer_value
    if percent is None:
        percent = discount.value
    return _percent_of(eligible_lines(discount, context), bases, percent)


def overstock_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    lines = [line for line in eligible_lines(discount, context) if line.is_overstock]
    return _percent_of(lines, bases, discount.value)


def free_shipping_amount(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    return {}


CALCULATORS: Dict[DiscountType, Calculator] = {
    DiscountType.PERCENTAGE: percentage_amount,
    DiscountType.FIXED_AMOUNT: fixed_amount,
    DiscountType.BUY_X_GET_Y: buy_x_get_y_amount,
    DiscountType.FREE_SHIPPING: free_shipping_amount,
    DiscountType.BUNDLE: bundle_amount,
    DiscountType.VOLUME_TIERS: volume_tiers_amount,
    DiscountType.TRADE_IN: trade_in_amount,
    DiscountType.REFERRAL: referral_amount,
    DiscountType.LOYALTY: percentage_amount,
    DiscountType.CART_ABANDONMENT: percentage_amount,
    DiscountType.OVERSTOCK_CLEARANCE: overstock_amount,
    DiscountType.EARLY_PAYMENT: percentage_amount,
}


def compute_allocations(discount: Discount, context: PricingContext, bases: Bases) -> Allocations:
    allocations = CALCULATORS[discount.type](discount, context, bases)
    if discount.max_discount_amount is not None:
        total = total_of(allocations, _currency(bases))
        cap = Money(discount.max_discount_amount, _currency(bases))
        if total > cap:
            allocations = allocate_proportionally(cap, allocations)
    return {line_id: amount for line_id, amount in allocations.items() if amount.amount > ZERO}


def percent_or_fixed(discount: Discount, amount: Money) -> Money:
    """Amount a shipping-scoped percentage or fixed discount takes off ``amount``."""
    if discount.type == DiscountType.FIXED_AMOUNT:
        reduction = Money(discount.value, amount.currency)
    else:
        reduction = amount.percent(discount.value)
    if discount.max_discount_amount is not None:
        reduction = reduction.min(Money(discount.max_discount_amount, amount.currency))
    return reduction.min(amount).clamp_floor()


