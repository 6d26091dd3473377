from __future__ import annotations

from typing import Optional


class RetryableError(Exception):
    """Indicates a failure that may succeed on retry."""


class NonRetryableError(Exception):
    """Indicates a failure that should not be retried."""


class PricingError(Exception):
    """Base class for typed failures raised by the pricing engine."""

    code = "PRICING_ERROR"


class CurrencyMismatchError(PricingError, ValueError):
    code = "CURRENCY_MISMATCH"

    def __init__(self, left: str, right: str) -> None:
        super().__init__(f"cannot combine {left} with {right} without conversion")
        self.left = left
        self.right = right


class ZoneNotFound(PricingError):
    """No matching or default zone; the concern prices at zero and is flagged."""

    code = "ZONE_NOT_FOUND"

    def __init__(self, concern: str) -> None:
        super().__init__(f"no {concern} zone matches the address")
        self.concern = concern


class NoShippingRateAvailable(PricingError):
    code = "NO_SHIPPING_RATE"

    def __init__(self, method_id: str, zone_id: Optional[str], reason: str) -> None:
        super().__init__(f"shipping method {method_id} unavailable for zone {zone_id}: {reason}")
        self.method_id = method_id
        self.zone_id = zone_id
        self.reason = reason


class MissingExchangeRate(PricingError):
    code = "MISSING_EXCHANGE_RATE"

    def __init__(self, from_currency: str, to_currency: str) -> None:
        super().__init__(f"no exchange rate between {from_currency} and {to_currency}")
        self.from_currency = from_currency
        self.to_currency = to_currency


class CouponRejected(PricingError):
    """Coupon could not be applied; pricing continues without it."""

    code = "COUPON_REJECTED"

    def __init__(self, coupon_code: str, message: str) -> None:
        super().__init__(message)
        self.coupon_code = coupon_code


class DiscountCodeInvalid(CouponRejected):
    code = "INVALID_CODE"


class DiscountExpired(CouponRejected):
    code = "EXPIRED"


class UsageLimitExceeded(CouponRejected):
    code = "USAGE_LIMIT_REACHED"


class DiscountNotApplicable(CouponRejected):
    code = "NOT_APPLICABLE"


class RoundingPrecisionViolation(AssertionError):
    """An amount left the rounder with more places than its currency allows."""

    code = "ROUNDING_PRECISION_VIOLATION"
