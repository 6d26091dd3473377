from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from storefront_pricing.app.models.config import StoreConfig
from storefront_pricing.engine.canonical.models import PricingResult


class DiscountUsage(BaseModel):
    """One discount consumed by an order, with the limits guarding its counters."""

    discount_id: str
    total_usage_limit: Optional[int] = None
    per_customer_limit: Optional[int] = None
    baseline: int = 0

    @property
    def remaining(self) -> Optional[int]:
        """Ledger increments still allowed on top of the configured baseline."""
        if self.total_usage_limit is None:
            return None
        return self.total_usage_limit - self.baseline


class OrderCompletion(BaseModel):
    store_id: str
    order_id: str
    customer_id: Optional[str] = None
    discounts: List[DiscountUsage] = Field(default_factory=list)
    totals: Dict[str, str] = Field(default_factory=dict)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def discount_ids(self) -> List[str]:
        return [usage.discount_id for usage in self.discounts]

    @classmethod
    def from_result(
        cls,
        *,
        config: StoreConfig,
        order_id: str,
        customer_id: Optional[str],
        result: PricingResult,
        totals: Optional[Dict[str, str]] = None,
    ) -> "OrderCompletion":
        by_id = {discount.id: discount for discount in config.discounts}
        usages: List[DiscountUsage] = []
        seen = set()
        for applied in result.applied_discounts:
            if applied.discount_id in seen:
                continue
            seen.add(applied.discount_id)
            discount = by_id.get(applied.discount_id)
            usages.append(
                DiscountUsage(
                    discount_id=applied.discount_id,
                    total_usage_limit=discount.total_usage_limit if discount else None,
                    per_customer_limit=discount.per_customer_limit if discount else None,
                    baseline=discount.usage_count if discount else 0,
                )
            )
        return cls(
            store_id=config.store_id,
            order_id=order_id,
            customer_id=customer_id,
            discounts=usages,
            totals=totals or {},
        )
