from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storefront_pricing.engine.canonical.models import (
    DiscountScope,
    DiscountType,
    RoundingMode,
    StackingPolicy,
    TaxRateType,
    as_utc,
)


def _upper_codes(values: object) -> object:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(str(value).strip().upper() for value in values if str(value).strip())


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class CurrencyConfig(Record):
    code: str
    decimal_places: int = 2
    rounding: RoundingMode = RoundingMode.STANDARD
    rounding_increment: Optional[Decimal] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("decimal_places")
    @classmethod
    def sane_places(cls, value: int) -> int:
        if value < 0 or value > 8:
            raise ValueError("decimal_places must be between 0 and 8")
        return value

    @model_validator(mode="after")
    def increment_required(self) -> "CurrencyConfig":
        if self.rounding == RoundingMode.TO_INCREMENT and not self.rounding_increment:
            raise ValueError("rounding_increment is required for to_increment rounding")
        return self


class TaxCategory(Record):
    code: str
    name: Optional[str] = None
    is_tax_exempt: bool = False
    is_default: bool = False
    is_active: bool = True


class Zone(Record):
    """Geographic rule set shared by tax and shipping zones."""

    id: str
    name: Optional[str] = None
    priority: int = 0
    sort_order: int = 0
    is_active: bool = True
    is_default: bool = False
    countries: FrozenSet[str] = frozenset()
    states: FrozenSet[str] = frozenset()
    postal_patterns: Tuple[str, ...] = ()
    cities: FrozenSet[str] = frozenset()
    excluded_countries: FrozenSet[str] = frozenset()
    excluded_states: FrozenSet[str] = frozenset()
    excluded_postal_codes: Tuple[str, ...] = ()

    @field_validator("countries", "states", "excluded_countries", "excluded_states", mode="before")
    @classmethod
    def upper_sets(cls, value: object) -> object:
        return _upper_codes(value)

    @field_validator("cities", mode="before")
    @classmethod
    def casefold_cities(cls, value: object) -> object:
        if value is None:
            return frozenset()
        return frozenset(str(city).strip().casefold() for city in value if str(city).strip())

    @property
    def has_criteria(self) -> bool:
        return bool(self.countries or self.states or self.postal_patterns or self.cities)


class TaxRate(Record):
    id: str
    name: Optional[str] = None
    zone_id: str
    category: str
    rate_type: TaxRateType = TaxRateType.PERCENTAGE
    rate: Decimal = Decimal("0")
    flat_amount: Optional[Decimal] = None
    is_compound: bool = False
    is_gst: bool = False
    tax_shipping: bool = False
    minimum_amount: Optional[Decimal] = None
    maximum_amount: Optional[Decimal] = None
    maximum_tax: Optional[Decimal] = None
    priority: int = 0
    sort_order: int = 0
    jurisdiction_type: Optional[str] = None
    jurisdiction_name: Optional[str] = None
    jurisdiction_code: Optional[str] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    is_active: bool = True

    @field_validator("effective_from", "effective_to")
    @classmethod
    def utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def is_effective(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        if self.effective_from and now < self.effective_from:
            return False
        if self.effective_to and now > self.effective_to:
            return False
        return True


class ShippingMethod(Record):
    id: str
    name: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    is_taxable: bool = True
    per_weight_rate: Optional[Decimal] = None
    per_item_rate: Optional[Decimal] = None
    percentage_rate: Optional[Decimal] = None
    handling_fee: Optional[Decimal] = None
    minimum_cost: Optional[Decimal] = None
    maximum_cost: Optional[Decimal] = None
    free_shipping_threshold: Optional[Decimal] = None
    min_weight: Optional[Decimal] = None
    max_weight: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None


class ShippingRate(Record):
    zone_id: str
    method_id: str
    is_active: bool = True
    sort_order: int = 0
    base_rate: Decimal = Decimal("0")
    per_weight_rate: Optional[Decimal] = None
    per_item_rate: Optional[Decimal] = None
    percentage_rate: Optional[Decimal] = None
    handling_fee: Optional[Decimal] = None
    minimum_cost: Optional[Decimal] = None
    maximum_cost: Optional[Decimal] = None
    min_weight: Optional[Decimal] = None
    max_weight: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None
    free_shipping_threshold: Optional[Decimal] = None


class VolumeTier(Record):
    min_quantity: int
    discount_percent: Decimal


class Discount(Record):
    id: str
    name: Optional[str] = None
    code: Optional[str] = None
    type: DiscountType = DiscountType.PERCENTAGE
    scope: DiscountScope = DiscountScope.ORDER
    value: Decimal = Decimal("0")
    max_discount_amount: Optional[Decimal] = None

    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    applicable_product_ids: FrozenSet[str] = frozenset()
    applicable_category_ids: FrozenSet[str] = frozenset()
    excluded_product_ids: FrozenSet[str] = frozenset()
    excluded_category_ids: FrozenSet[str] = frozenset()
    exclude_sale_items: bool = False
    eligible_customer_ids: FrozenSet[str] = frozenset()
    eligible_customer_tiers: FrozenSet[str] = frozenset()
    first_time_only: bool = False

    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    get_product_ids: FrozenSet[str] = frozenset()
    get_discount_percent: Decimal = Decimal("100")

    bundle_product_ids: FrozenSet[str] = frozenset()
    bundle_discount_value: Optional[Decimal] = None

    volume_tiers: Tuple[VolumeTier, ...] = ()

    early_payment_days: Optional[int] = None
    standard_payment_days: Optional[int] = None

    referral_new_customer_value: Optional[Decimal] = None

    loyalty_points_threshold: Optional[int] = None
    loyalty_tier_required: Optional[str] = None

    requires_email_subscription: bool = False

    trade_in_credit_per_item: Optional[Decimal] = None
    trade_in_product_ids: FrozenSet[str] = frozenset()
    trade_in_target_product_ids: FrozenSet[str] = frozenset()

    total_usage_limit: Optional[int] = None
    per_customer_limit: Optional[int] = None
    usage_count: int = 0

    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    can_combine: bool = False
    priority: int = 0

    @field_validator("code")
    @classmethod
    def blank_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("eligible_customer_tiers", mode="before")
    @classmethod
    def casefold_tiers(cls, value: object) -> object:
        if value is None:
            return frozenset()
        return frozenset(str(tier).strip().casefold() for tier in value)

    @field_validator("start_date", "end_date")
    @classmethod
    def utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @model_validator(mode="after")
    def check_values(self) -> "Discount":
        if self.type == DiscountType.PERCENTAGE and not (Decimal("0") < self.value <= Decimal("100")):
            raise ValueError("percentage must be between 0 and 100")
        if self.type == DiscountType.FIXED_AMOUNT and self.value <= 0:
            raise ValueError("discount amount must be greater than 0")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("end_date must be after start_date")
        if self.type == DiscountType.BUY_X_GET_Y and (not self.buy_quantity or not self.get_quantity):
            raise ValueError("buy_x_get_y requires buy_quantity and get_quantity")
        return self

    @property
    def is_coupon(self) -> bool:
        return self.code is not None


class ExchangeRate(Record):
    from_currency: str
    to_currency: str
    rate: Decimal
    markup_percent: Optional[Decimal] = None
    effective_from: datetime
    effective_to: Optional[datetime] = None
    is_active: bool = True

    @field_validator("from_currency", "to_currency")
    @classmethod
    def upper_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("rate")
    @classmethod
    def positive_rate(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("rate must be > 0")
        return value

    @field_validator("effective_from", "effective_to")
    @classmethod
    def utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def effective_rate(self) -> Decimal:
        if self.markup_percent is None:
            return self.rate
        return self.rate * (Decimal("1") + self.markup_percent / Decimal("100"))

    def is_valid_at(self, now: datetime) -> bool:
        if not self.is_active or now < self.effective_from:
            return False
        return self.effective_to is None or now <= self.effective_to


class StoreConfig(BaseModel):
    """Read-only configuration snapshot one pricing run is evaluated against."""

    model_config = ConfigDict(frozen=True)

    schema_version: int = 1
    store_id: str
    base_currency: str
    registered_country: Optional[str] = None
    registered_state: Optional[str] = None
    default_tax_category: Optional[str] = None
    shipping_tax_category: Optional[str] = None
    free_shipping_threshold: Optional[Decimal] = None
    stacking_policy: StackingPolicy = StackingPolicy.REMAINING
    currencies: List[CurrencyConfig] = Field(default_factory=list)
    tax_categories: List[TaxCategory] = Field(default_factory=list)
    tax_zones: List[Zone] = Field(default_factory=list)
    tax_rates: List[TaxRate] = Field(default_factory=list)
    shipping_zones: List[Zone] = Field(default_factory=list)
    shipping_methods: List[ShippingMethod] = Field(default_factory=list)
    shipping_rates: List[ShippingRate] = Field(default_factory=list)
    discounts: List[Discount] = Field(default_factory=list)
    exchange_rates: List[ExchangeRate] = Field(default_factory=list)

    @field_validator("base_currency", "registered_country", "registered_state")
    @classmethod
    def upper_codes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().upper()

    def currency(self, code: str) -> CurrencyConfig:
        code = code.upper()
        for currency in self.currencies:
            if currency.code == code:
                return currency
        return CurrencyConfig(code=code)

    def tax_category(self, code: Optional[str]) -> Optional[TaxCategory]:
        categories: Dict[str, TaxCategory] = {
            category.code: category for category in self.tax_categories if category.is_active
        }
        if code and code in categories:
            return categories[code]
        if self.default_tax_category and self.default_tax_category in categories:
            return categories[self.default_tax_category]
        for category in categories.values():
            if category.is_default:
                return category
        return None

    def shipping_method(self, method_id: str) -> Optional[ShippingMethod]:
        for method in self.shipping_methods:
            if method.id == method_id:
                return method
        return None
