from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from storefront_pricing.app.models.config import Discount
from storefront_pricing.engine.canonical.models import (
    AppliedDiscount,
    CouponRejection,
    DiscountScope,
    DiscountType,
    LineAllocation,
    PricingContext,
    StackingPolicy,
)
from storefront_pricing.engine.discounts.amounts import (
    Allocations,
    compute_allocations,
    percent_or_fixed,
    total_of,
)
from storefront_pricing.engine.discounts.eligibility import UsageSnapshot, check_eligibility
from storefront_pricing.engine.money.money import ZERO, Money
from storefront_pricing.util.errors import (
    CouponRejected,
    DiscountCodeInvalid,
    DiscountNotApplicable,
)


@dataclass(frozen=True)
class DiscountResolution:
    applied: Tuple[AppliedDiscount, ...]
    total: Money
    line_discounts: Mapping[str, Money]
    waives_shipping: bool = False
    shipping_discounts: Tuple[Discount, ...] = ()
    coupon_rejection: Optional[CouponRejection] = None


@dataclass
class _Candidate:
    discount: Discount
    allocations: Allocations = field(default_factory=dict)
    amount: Optional[Money] = None


def _exclusive_key(candidate: _Candidate) -> tuple:
    # Highest amount, then highest priority, then lowest id.
    return (-candidate.amount.amount, -candidate.discount.priority, candidate.discount.id)


def _stack_key(discount: Discount) -> tuple:
    return (discount.priority, discount.id)


def _rejection(exc: CouponRejected) -> CouponRejection:
    return CouponRejection(coupon_code=exc.coupon_code, reason=exc.code, message=str(exc))


def _to_applied(candidate: _Candidate) -> AppliedDiscount:
    discount = candidate.discount
    allocations = tuple(
        LineAllocation(line_id=line_id, amount=amount.amount)
        for line_id, amount in sorted(candidate.allocations.items())
    )
    return AppliedDiscount(
        discount_id=discount.id,
        code=discount.code,
        type=discount.type,
        scope=discount.scope,
        amount=candidate.amount.amount if candidate.amount else ZERO,
        line_allocations=allocations,
        affected_line_ids=tuple(allocation.line_id for allocation in allocations),
        waives_shipping=discount.type == DiscountType.FREE_SHIPPING,
    )


class DiscountResolver:
    """Select and stack the discounts that apply to one pricing context.

    Resolution is pure: it reads usage counters from ``UsageSnapshot`` but
    never changes them. Exclusive discounts (``can_combine`` false) compete
    and at most one is applied; combinable discounts all apply in ascending
    priority. When both kinds are eligible, the exclusive winner is used only
    if it beats the combined stack.

    ``stacking_policy`` pins how combinable discounts see each other:
    ``remaining`` computes each discount on what earlier ones left,
    ``original`` computes each on the undiscounted line amounts (still never
    taking a line below zero).
    """

    def __init__(self, *, currency: str, stacking_policy: StackingPolicy = StackingPolicy.REMAINING) -> None:
        self.currency = currency
        self.stacking_policy = stacking_policy

    def _bases(self, context: PricingContext) -> Dict[str, Money]:
        return {line.line_id: Money(line.line_total, self.currency) for line in context.lines}

    def _select(
        self,
        context: PricingContext,
        discounts: Sequence[Discount],
        usage: UsageSnapshot,
        subtotal: Money,
    ) -> Tuple[List[Discount], Optional[Discount], Optional[CouponRejection]]:
        coupon: Optional[Discount] = None
        rejection: Optional[CouponRejection] = None
        if context.coupon_code:
            wanted = context.coupon_code.casefold()
            matches = sorted(
                (discount for discount in discounts if discount.code and discount.code.casefold() == wanted),
                key=lambda discount: discount.id,
            )
            if matches:
                coupon = matches[0]
            else:
                rejection = _rejection(
                    DiscountCodeInvalid(context.coupon_code, "Coupon code not found.")
                )
        selected: List[Discount] = []
        for discount in discounts:
            if discount.is_coupon and discount is not coupon:
                continue
            try:
                check_eligibility(discount, context, usage, subtotal.amount)
            except CouponRejected as exc:
                if discount is coupon:
                    rejection = _rejection(exc)
                continue
            selected.append(discount)
        return selected, coupon, rejection

    def _stack(self, context: PricingContext, discounts: Sequence[Discount]) -> List[_Candidate]:
        original = self._bases(context)
        remaining = dict(original)
        stacked: List[_Candidate] = []
        for discount in sorted(discounts, key=_stack_key):
            bases = remaining if self.stacking_policy == StackingPolicy.REMAINING else original
            allocations = compute_allocations(discount, context, bases)
            clamped: Allocations = {}
            for line_id, amount in allocations.items():
                amount = amount.min(remaining[line_id])
                if amount.amount > ZERO:
                    clamped[line_id] = amount
                    remaining[line_id] = remaining[line_id] - amount
            if clamped:
                stacked.append(
                    _Candidate(discount=discount, allocations=clamped, amount=total_of(clamped, self.currency))
                )
        return stacked

    def resolve(
        self,
        context: PricingContext,
        discounts: Sequence[Discount],
        usage: Optional[UsageSnapshot] = None,
    ) -> DiscountResolution:
        usage = usage or UsageSnapshot()
        bases = self._bases(context)
        subtotal = total_of(bases, self.currency)
        selected, coupon, rejection = self._select(context, discounts, usage, subtotal)

        waivers = [discount for discount in selected if discount.type == DiscountType.FREE_SHIPPING]
        shipping = [
            discount
            for discount in selected
            if discount.scope == DiscountScope.SHIPPING and discount.type != DiscountType.FREE_SHIPPING
        ]
        merchandise = [discount for discount in selected if discount not in waivers and discount not in shipping]

        exclusive: List[_Candidate] = []
        for discount in merchandise:
            if discount.can_combine:
                continue
            allocations = compute_allocations(discount, context, bases)
            if allocations:
                exclusive.append(
                    _Candidate(discount=discount, allocations=allocations, amount=total_of(allocations, self.currency))
                )
        stack = self._stack(context, [discount for discount in merchandise if discount.can_combine])
        stack_total = Money.zero(self.currency)
        for candidate in stack:
            stack_total = stack_total + candidate.amount

        chosen = stack
        if exclusive:
            winner = sorted(exclusive, key=_exclusive_key)[0]
            if winner.amount > stack_total:
                chosen = [winner]

        if coupon is not None and rejection is None and coupon in merchandise:
            if not any(candidate.discount is coupon for candidate in chosen):
                computed = any(candidate.discount is coupon for candidate in exclusive + stack)
                message = (
                    "This coupon cannot be combined with a better discount."
                    if computed
                    else "This coupon is not applicable to your cart."
                )
                rejection = _rejection(DiscountNotApplicable(coupon.code or coupon.id, message))

        line_discounts: Dict[str, Money] = {}
        for candidate in chosen:
            for line_id, amount in candidate.allocations.items():
                line_discounts[line_id] = line_discounts.get(line_id, Money.zero(self.currency)) + amount
        for line_id, amount in list(line_discounts.items()):
            line_discounts[line_id] = amount.min(bases[line_id])
        total = total_of(line_discounts, self.currency).min(subtotal).clamp_floor()

        applied = [_to_applied(candidate) for candidate in chosen]
        applied.extend(_to_applied(_Candidate(discount=discount)) for discount in sorted(waivers, key=_stack_key))
        return DiscountResolution(
            applied=tuple(applied),
            total=total,
            line_discounts=line_discounts,
            waives_shipping=bool(waivers),
            shipping_discounts=tuple(sorted(shipping, key=_stack_key)),
            coupon_rejection=rejection,
        )

    def resolve_shipping(
        self, cost: Money, discounts: Sequence[Discount]
    ) -> Tuple[Money, Tuple[AppliedDiscount, ...]]:
        """Apply shipping-scoped percentage/fixed discounts to a computed shipping cost."""
        if cost.amount <= ZERO or not discounts:
            return Money.zero(cost.currency), ()
        exclusive = [
            _Candidate(discount=discount, amount=percent_or_fixed(discount, cost))
            for discount in discounts
            if not discount.can_combine
        ]
        exclusive = [candidate for candidate in exclusive if candidate.amount.amount > ZERO]
        stack: List[_Candidate] = []
        remaining = cost
        for discount in sorted((d for d in discounts if d.can_combine), key=_stack_key):
            base = remaining if self.stacking_policy == StackingPolicy.REMAINING else cost
            amount = percent_or_fixed(discount, base).min(remaining)
            if amount.amount > ZERO:
                stack.append(_Candidate(discount=discount, amount=amount))
                remaining = remaining - amount
        stack_total = cost - remaining
        chosen = stack
        if exclusive:
            winner = sorted(exclusive, key=_exclusive_key)[0]
            if winner.amount > stack_total:
                chosen = [winner]
        reduction = Money.zero(cost.currency)
        for candidate in chosen:
            reduction = reduction + candidate.amount
        return reduction.min(cost), tuple(_to_applied(candidate) for candidate in chosen)
