#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from pathlib import Path

from storefront_pricing.app.config.loader import load_store_config
from storefront_pricing.engine.canonical.io import result_fingerprint, to_persisted_totals
from storefront_pricing.engine.canonical.models import PricingContext
from storefront_pricing.engine.run import price_cart


def load_context(path: Path, *, now: str | None, coupon: str | None, method: str | None) -> PricingContext:
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if now:
        data["now"] = now
    data.setdefault("now", datetime.now(timezone.utc).isoformat())
    if coupon is not None:
        data["coupon_code"] = coupon
    if method is not None:
        data["shipping_method"] = method
    return PricingContext.model_validate(data)


def main() -> None:
    parser = argparse.ArgumentParser(description="Price a cart JSON against a store config YAML")
    parser.add_argument("--config", required=True, help="Path to store config YAML")
    parser.add_argument("--cart", required=True, help="Path to pricing context JSON")
    parser.add_argument("--now", help="ISO-8601 timestamp to price at")
    parser.add_argument("--coupon", help="Coupon code override")
    parser.add_argument("--shipping-method", help="Shipping method override")
    parser.add_argument("--totals-only", action="store_true", help="Print the persisted totals only")
    parser.add_argument("--output", help="Write the result JSON to this path")
    args = parser.parse_args()

    config = load_store_config(Path(args.config))
    context = load_context(Path(args.cart), now=args.now, coupon=args.coupon, method=args.shipping_method)
    result = price_cart(config, context)

    if args.totals_only:
        payload = to_persisted_totals(result)
    else:
        payload = json.loads(result.model_dump_json())
        payload["fingerprint"] = result_fingerprint(result)
    text = json.dumps(payload, indent=2, sort_keys=True)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + "\n", encoding="utf-8")
    else:
        print(text)


if __name__ == "__main__":
    main()
