from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Mapping, Optional

from storefront_pricing.app.models.config import Discount
from storefront_pricing.engine.canonical.models import DiscountType, LineItem, PricingContext
from storefront_pricing.util.errors import (
    CouponRejected,
    DiscountExpired,
    DiscountNotApplicable,
    UsageLimitExceeded,
)


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage counters read from the ledger before a pricing run."""

    total_counts: Mapping[str, int] = field(default_factory=dict)
    customer_counts: Mapping[str, int] = field(default_factory=dict)

    def total_for(self, discount: Discount) -> int:
        # Configured usage_count is the baseline the ledger counts on top of.
        return discount.usage_count + self.total_counts.get(discount.id, 0)

    def customer_for(self, discount: Discount) -> int:
        return self.customer_counts.get(discount.id, 0)


def line_is_eligible(discount: Discount, line: LineItem) -> bool:
    if discount.exclude_sale_items and line.is_on_sale:
        return False
    if line.product_id in discount.excluded_product_ids:
        return False
    if line.category_ids & discount.excluded_category_ids:
        return False
    if discount.applicable_product_ids or discount.applicable_category_ids:
        return (
            line.product_id in discount.applicable_product_ids
            or bool(line.category_ids & discount.applicable_category_ids)
        )
    return True


def eligible_lines(discount: Discount, context: PricingContext) -> List[LineItem]:
    return [line for line in context.lines if line_is_eligible(discount, line)]


def eligible_quantity(discount: Discount, context: PricingContext) -> int:
    return sum(line.quantity for line in eligible_lines(discount, context))


def _label(discount: Discount) -> str:
    return discount.code or discount.id


def check_validity(discount: Discount, context: PricingContext, usage: UsageSnapshot) -> None:
    """Raise the coupon error describing why ``discount`` cannot be used right now."""
    label = _label(discount)
    if not discount.is_active:
        raise DiscountExpired(label, "This discount is no longer active.")
    if discount.start_date and context.now < discount.start_date:
        raise DiscountExpired(label, "This discount is not yet valid.")
    if discount.end_date and context.now > discount.end_date:
        raise DiscountExpired(label, "This discount has expired.")
    if discount.total_usage_limit is not None and usage.total_for(discount) >= discount.total_usage_limit:
        raise UsageLimitExceeded(label, "This discount has reached its usage limit.")
    if discount.per_customer_limit is not None and context.customer.customer_id:
        if usage.customer_for(discount) >= discount.per_customer_limit:
            raise UsageLimitExceeded(
                label, "This discount has been used the maximum number of times by this customer."
            )


def _type_failure(discount: Discount, context: PricingContext) -> Optional[str]:
    customer = context.customer
    if discount.type == DiscountType.REFERRAL:
        if not customer.referred_by:
            return "referral discounts require a referred customer"
        if not customer.is_first_order:
            return "referral discounts apply to a first order only"
    elif discount.type == DiscountType.LOYALTY:
        if discount.loyalty_points_threshold is not None and customer.loyalty_points < discount.loyalty_points_threshold:
            return "not enough loyalty points"
        if discount.loyalty_tier_required and (
            not customer.tier or customer.tier.casefold() != discount.loyalty_tier_required.casefold()
        ):
            return "loyalty tier not reached"
    elif discount.type == DiscountType.CART_ABANDONMENT:
        if not context.is_recovered_cart:
            return "only recovered carts qualify"
    elif discount.type == DiscountType.EARLY_PAYMENT:
        if discount.early_payment_days is None or context.payment_terms_days is None:
            return "no early payment terms"
        if context.payment_terms_days > discount.early_payment_days:
            return "payment terms exceed the early payment window"
    elif discount.type == DiscountType.TRADE_IN:
        if not matched_trade_ins(discount, context):
            return "no qualifying trade-in items"
    elif discount.type == DiscountType.BUNDLE:
        products = {line.product_id for line in context.lines}
        if not discount.bundle_product_ids or not discount.bundle_product_ids <= products:
            return "bundle is incomplete"
    elif discount.type == DiscountType.VOLUME_TIERS:
        quantity = eligible_quantity(discount, context)
        if not any(tier.min_quantity <= quantity for tier in discount.volume_tiers):
            return "no volume tier reached"
    elif discount.type == DiscountType.OVERSTOCK_CLEARANCE:
        if not any(line.is_overstock for line in eligible_lines(discount, context)):
            return "no clearance items in the cart"
    return None


def matched_trade_ins(discount: Discount, context: PricingContext) -> List[str]:
    offered = context.customer.trade_in_product_ids
    if not discount.trade_in_product_ids:
        return list(offered)
    return [product_id for product_id in offered if product_id in discount.trade_in_product_ids]


def check_applicability(discount: Discount, context: PricingContext, subtotal: Decimal) -> None:
    """Raise ``DiscountNotApplicable`` when customer, cart or type predicates fail."""
    label = _label(discount)
    customer = context.customer
    if discount.eligible_customer_ids and customer.customer_id not in discount.eligible_customer_ids:
        raise DiscountNotApplicable(label, "This discount is not available for this customer.")
    if discount.eligible_customer_tiers and (
        not customer.tier or customer.tier.casefold() not in discount.eligible_customer_tiers
    ):
        raise DiscountNotApplicable(label, "This discount is not available for this customer tier.")
    if discount.first_time_only and not customer.is_first_order:
        raise DiscountNotApplicable(label, "This discount is for first-time customers only.")
    if discount.requires_email_subscription and not customer.email_subscribed:
        raise DiscountNotApplicable(label, "This discount requires an email subscription.")
    if discount.min_order_amount is not None and subtotal < discount.min_order_amount:
        raise DiscountNotApplicable(
            label, f"Minimum order amount of {discount.min_order_amount} required."
        )
    if discount.max_order_amount is not None and subtotal > discount.max_order_amount:
        raise DiscountNotApplicable(
            label, f"Order amount exceeds the maximum of {discount.max_order_amount}."
        )
    quantity = eligible_quantity(discount, context)
    if quantity == 0 and discount.type != DiscountType.FREE_SHIPPING:
        raise DiscountNotApplicable(label, "This discount is not applicable to your cart.")
    if discount.min_quantity is not None and quantity < discount.min_quantity:
        raise DiscountNotApplicable(label, f"At least {discount.min_quantity} eligible items required.")
    if discount.max_quantity is not None and quantity > discount.max_quantity:
        raise DiscountNotApplicable(label, f"At most {discount.max_quantity} eligible items allowed.")
    failure = _type_failure(discount, context)
    if failure:
        raise DiscountNotApplicable(label, f"This discount is not applicable: {failure}.")


def check_eligibility(
    discount: Discount,
    context: PricingContext,
    usage: UsageSnapshot,
    subtotal: Decimal,
) -> None:
    check_validity(discount, context, usage)
    check_applicability(discount, context, subtotal)


def is_eligible(
    discount: Discount,
    context: PricingContext,
    usage: UsageSnapshot,
    subtotal: Decimal,
) -> bool:
    try:
        check_eligibility(discount, context, usage, subtotal)
    except CouponRejected:
        return False
    return True
