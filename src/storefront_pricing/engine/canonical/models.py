from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    BUY_X_GET_Y = "buy_x_get_y"
    FREE_SHIPPING = "free_shipping"
    BUNDLE = "bundle"
    VOLUME_TIERS = "volume_tiers"
    TRADE_IN = "trade_in"
    REFERRAL = "referral"
    LOYALTY = "loyalty"
    CART_ABANDONMENT = "cart_abandonment"
    OVERSTOCK_CLEARANCE = "overstock_clearance"
    EARLY_PAYMENT = "early_payment"


class DiscountScope(str, Enum):
    ORDER = "order"
    PRODUCT = "product"
    CATEGORY = "category"
    SHIPPING = "shipping"


class RoundingMode(str, Enum):
    STANDARD = "standard"
    UP = "up"
    DOWN = "down"
    TO_INCREMENT = "to_increment"


class TaxRateType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"
    PER_UNIT = "per_unit"


class StackingPolicy(str, Enum):
    REMAINING = "remaining"
    ORIGINAL = "original"


class Address(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str
    state: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None

    @field_validator("country")
    @classmethod
    def required_country(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("country is required")
        return value.strip().upper()

    @field_validator("state")
    @classmethod
    def normalize_state(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip().upper()

    @field_validator("postal_code", "city")
    @classmethod
    def strip_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_id: str
    product_id: str
    variant_id: Optional[str] = None
    category_ids: FrozenSet[str] = frozenset()
    quantity: int
    unit_price: Decimal
    is_on_sale: bool = False
    is_overstock: bool = False
    unit_weight: Decimal = Decimal("0")
    tax_category: Optional[str] = None

    @field_validator("line_id", "product_id")
    @classmethod
    def required_stripped(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value is required")
        return value.strip()

    @field_validator("quantity")
    @classmethod
    def positive_quantity(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("quantity must be > 0")
        return value

    @field_validator("unit_price", "unit_weight")
    @classmethod
    def non_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def weight(self) -> Decimal:
        return self.unit_weight * self.quantity


class CustomerProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: Optional[str] = None
    tier: Optional[str] = None
    is_first_order: bool = False
    is_tax_exempt: bool = False
    loyalty_points: int = 0
    referred_by: Optional[str] = None
    email_subscribed: bool = False
    trade_in_product_ids: Tuple[str, ...] = ()


class PricingContext(BaseModel):
    """Immutable input to one pipeline run."""

    model_config = ConfigDict(frozen=True)

    cart_id: str
    customer: CustomerProfile = Field(default_factory=CustomerProfile)
    lines: Tuple[LineItem, ...] = ()
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    currency: str
    coupon_code: Optional[str] = None
    shipping_method: Optional[str] = None
    now: datetime
    payment_terms_days: Optional[int] = None
    is_recovered_cart: bool = False

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("currency is required")
        return value.strip().upper()

    @field_validator("coupon_code", "shipping_method")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("now")
    @classmethod
    def utc_now(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def unique_line_ids(self) -> "PricingContext":
        seen = set()
        for line in self.lines:
            if line.line_id in seen:
                raise ValueError(f"duplicate line_id {line.line_id}")
            seen.add(line.line_id)
        return self

    @property
    def tax_address(self) -> Optional[Address]:
        return self.shipping_address or self.billing_address

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


class LineAllocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_id: str
    amount: Decimal


class AppliedDiscount(BaseModel):
    model_config = ConfigDict(frozen=True)

    discount_id: str
    code: Optional[str] = None
    type: DiscountType
    scope: DiscountScope
    amount: Decimal
    line_allocations: Tuple[LineAllocation, ...] = ()
    affected_line_ids: Tuple[str, ...] = ()
    waives_shipping: bool = False


class TaxLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    jurisdiction_type: str
    jurisdiction_name: str
    jurisdiction_code: Optional[str] = None
    component: Optional[str] = None
    rate: Decimal
    amount: Decimal
    is_compound: bool = False


class CouponRejection(BaseModel):
    model_config = ConfigDict(frozen=True)

    coupon_code: str
    reason: str
    message: str


class PricingResult(BaseModel):
    """Totals of one pipeline run; replaced, never mutated, on every cart change."""

    model_config = ConfigDict(frozen=True)

    cart_id: str
    currency: str
    subtotal: Decimal
    discount_total: Decimal
    applied_discounts: Tuple[AppliedDiscount, ...] = ()
    tax_total: Decimal
    tax_breakdown: Tuple[TaxLine, ...] = ()
    shipping_total: Decimal
    shipping_discount_total: Decimal = Decimal("0")
    grand_total: Decimal
    tax_zone_id: Optional[str] = None
    shipping_zone_id: Optional[str] = None
    shipping_method: Optional[str] = None
    shipping_waived: bool = False
    exchange_rate: Optional[Decimal] = None
    warnings: Tuple[str, ...] = ()
    coupon_rejection: Optional[CouponRejection] = None
