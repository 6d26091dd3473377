import json

from storefront_pricing.app.models.config import Discount
from storefront_pricing.engine.canonical.io import canonical_json, result_fingerprint, to_persisted_totals
from storefront_pricing.engine.run import price_cart


def test_persisted_totals_are_strings(store_config, make_context) -> None:
    config = store_config.model_copy(
        update={"discounts": [Discount(id="ten-off", type="percentage", value="10")]}
    )
    result = price_cart(
        config,
        make_context({"line_id": "l1", "product_id": "p1", "quantity": 1, "unit_price": "30", "unit_weight": "3"}),
    )

    totals = to_persisted_totals(result)

    assert totals["subtotal"] == "30.00"
    assert totals["discount_total"] == "3.00"
    assert totals["shipping_total"] == "0.00"
    assert totals["currency"] == "USD"
    applied = json.loads(totals["applied_discounts"])
    assert applied[0]["discount_id"] == "ten-off"
    assert applied[0]["amount"] == "3.00"


def test_fingerprint_changes_with_the_cart(store_config, make_context) -> None:
    small = price_cart(store_config, make_context())
    large = price_cart(
        store_config, make_context({"line_id": "l1", "product_id": "p1", "quantity": 2, "unit_price": "100"})
    )

    assert result_fingerprint(small) == result_fingerprint(price_cart(store_config, make_context()))
    assert result_fingerprint(small) != result_fingerprint(large)
    assert json.loads(canonical_json(small))["grand_total"] == "110.16"
