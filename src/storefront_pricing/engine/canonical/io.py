from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from typing import Any, Dict

from storefront_pricing.engine.canonical.models import PricingResult

TOTAL_FIELDS = ("subtotal", "discount_total", "tax_total", "shipping_total", "grand_total")


def _format_decimal(value: Decimal) -> str:
    return format(value, "f")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return _format_decimal(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def canonical_json(result: PricingResult) -> str:
    payload = _jsonable(result.model_dump(mode="python"))
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def result_fingerprint(result: PricingResult) -> str:
    """Stable digest of a result; unchanged carts reprice to the same value."""
    return hashlib.sha256(canonical_json(result).encode("utf-8")).hexdigest()


def to_persisted_totals(result: PricingResult) -> Dict[str, str]:
    """Flatten a result into the order-row columns; callers persist only complete results."""
    totals = {field: _format_decimal(getattr(result, field)) for field in TOTAL_FIELDS}
    totals["currency"] = result.currency
    totals["applied_discounts"] = json.dumps(
        [_jsonable(discount.model_dump(mode="python")) for discount in result.applied_discounts],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return totals
