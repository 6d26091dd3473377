from decimal import Decimal

import pytest

from storefront_pricing.engine.run import (
    PricingSession,
    SessionNotPricedError,
    SessionState,
    price_cart,
)


def test_session_lifecycle(store_config, make_context) -> None:
    session = PricingSession(store_config, make_context())
    assert session.state == SessionState.DRAFT
    with pytest.raises(SessionNotPricedError):
        _ = session.result

    first = session.price()
    assert session.state == SessionState.PRICED
    assert session.result is first
    assert first.grand_total == Decimal("110.16")

    session.update(lines=[{"line_id": "l1", "product_id": "p1", "quantity": 2, "unit_price": "100"}])
    assert session.state == SessionState.DRAFT
    with pytest.raises(SessionNotPricedError):
        _ = session.result

    second = session.price()
    assert second.subtotal == Decimal("200.00")
    assert second is not first


def test_session_rejects_unknown_fields(store_config, make_context) -> None:
    session = PricingSession(store_config, make_context())
    with pytest.raises(ValueError):
        session.update(cart_id="other")


def test_price_cart_matches_session(store_config, make_context) -> None:
    context = make_context()
    assert price_cart(store_config, context) == PricingSession(store_config, context).price()
