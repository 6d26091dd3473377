from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from storefront_pricing.app.models.config import StoreConfig
from storefront_pricing.engine.canonical.models import PricingContext, PricingResult
from storefront_pricing.engine.discounts.eligibility import UsageSnapshot
from storefront_pricing.engine.pipeline import PricingPipeline

MUTABLE_FIELDS = {
    "lines",
    "customer",
    "shipping_address",
    "billing_address",
    "coupon_code",
    "shipping_method",
    "currency",
    "payment_terms_days",
    "is_recovered_cart",
}


class SessionState(str, Enum):
    DRAFT = "draft"
    PRICED = "priced"


class SessionNotPricedError(RuntimeError):
    """Raised when totals are read from a session that is still a draft."""


def price_cart(
    config: StoreConfig,
    context: PricingContext,
    usage: Optional[UsageSnapshot] = None,
) -> PricingResult:
    return PricingPipeline(config).price(context, usage)


class PricingSession:
    """Draft -> Priced -> Draft lifecycle of one cart.

    Any change to lines, customer, addresses, coupon or shipping method
    discards the current result and returns the session to draft. A new
    result always replaces the previous one.
    """

    def __init__(self, config: StoreConfig, context: PricingContext) -> None:
        self.pipeline = PricingPipeline(config)
        self.context = context
        self.state = SessionState.DRAFT
        self._result: Optional[PricingResult] = None

    @property
    def result(self) -> PricingResult:
        if self.state != SessionState.PRICED or self._result is None:
            raise SessionNotPricedError(f"cart {self.context.cart_id} has not been priced")
        return self._result

    def price(self, usage: Optional[UsageSnapshot] = None) -> PricingResult:
        self._result = self.pipeline.price(self.context, usage)
        self.state = SessionState.PRICED
        return self._result

    def update(self, **changes: Any) -> PricingContext:
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot change {', '.join(sorted(unknown))}")
        data = self.context.model_dump()
        data.update(changes)
        self.context = PricingContext.model_validate(data)
        self.state = SessionState.DRAFT
        self._result = None
        return self.context
