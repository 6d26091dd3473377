from decimal import Decimal
from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

import storefront_pricing.app.api.app as api_module
from storefront_pricing.persistence.dynamo_stores import InMemoryStoreConfigs
from storefront_pricing.persistence.dynamo_usage import InMemoryUsageLedger
from storefront_pricing.util.errors import UsageLimitExceeded


class FakeQueue:
    def __init__(self) -> None:
        self.sent = []

    def send(self, payload: dict, *, job_type=None) -> str:
        self.sent.append((payload, job_type))
        return "message-1"


class ExhaustedLedger(InMemoryUsageLedger):
    def record_order_usage(self, completion):
        raise UsageLimitExceeded("SAVE10", "usage limit reached")


@pytest.fixture()
def raw_config(tests_data_dir: Path) -> dict:
    data = yaml.safe_load((tests_data_dir / "store_config.yaml").read_text(encoding="utf-8"))
    data["discounts"] = [
        {"id": "save10", "code": "SAVE10", "type": "fixed_amount", "value": "10", "total_usage_limit": 1}
    ]
    return data


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch, raw_config: dict):
    monkeypatch.setattr(api_module, "stores_repo", InMemoryStoreConfigs())
    monkeypatch.setattr(api_module, "ledger", InMemoryUsageLedger())
    monkeypatch.setattr(api_module, "queue", None)
    test_client = TestClient(api_module.app)
    response = test_client.put("/v1/stores/store-1/config", json=raw_config)
    assert response.status_code == 200
    return test_client


def _cart(**overrides) -> dict:
    cart = {
        "cart_id": "cart-1",
        "currency": "USD",
        "now": "2025-06-01T12:00:00Z",
        "customer": {"customer_id": "cust-1"},
        "shipping_address": {"country": "US", "state": "CA", "postal_code": "90210"},
        "shipping_method": "standard",
        "lines": [{"line_id": "l1", "product_id": "p1", "quantity": 1, "unit_price": "30", "unit_weight": "3"}],
    }
    cart.update(overrides)
    return cart


def test_health(client: TestClient) -> None:
    assert client.get("/v1/health").json() == {"status": "ok"}


def test_config_versions(client: TestClient, raw_config: dict) -> None:
    raw_config["free_shipping_threshold"] = "20"
    response = client.put("/v1/stores/store-1/config", json=raw_config)
    assert response.json() == {"store_id": "store-1", "config_version": "2"}

    latest = client.get("/v1/stores/store-1/config").json()
    pinned = client.get("/v1/stores/store-1/config", params={"config_version": 1}).json()
    assert Decimal(latest["free_shipping_threshold"]) == Decimal("20")
    assert pinned["free_shipping_threshold"] is None
    assert client.get("/v1/stores/store-2/config").status_code == 404


def test_config_store_mismatch(client: TestClient, raw_config: dict) -> None:
    assert client.put("/v1/stores/other/config", json=raw_config).status_code == 400


def test_invalid_config_is_rejected(client: TestClient, raw_config: dict) -> None:
    raw_config["stacking_policy"] = "greedy"
    assert client.put("/v1/stores/store-1/config", json=raw_config).status_code == 422


def test_pricing_preview(client: TestClient) -> None:
    response = client.post("/v1/stores/store-1/pricing/preview", json=_cart())

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["shipping_total"]) == Decimal("8")
    assert Decimal(body["tax_total"]) == Decimal("3.69")
    assert Decimal(body["grand_total"]) == Decimal("41.69")


def test_preview_with_coupon(client: TestClient) -> None:
    body = client.post("/v1/stores/store-1/pricing/preview", json=_cart(coupon_code="save10")).json()

    assert Decimal(body["discount_total"]) == Decimal("10")
    assert body["applied_discounts"][0]["discount_id"] == "save10"
    assert body["coupon_rejection"] is None


def test_preview_errors(client: TestClient) -> None:
    heavy = _cart(
        shipping_method="express",
        lines=[{"line_id": "l1", "product_id": "p1", "quantity": 1, "unit_price": "30", "unit_weight": "25"}],
    )
    response = client.post("/v1/stores/store-1/pricing/preview", json=heavy)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "NO_SHIPPING_RATE"

    response = client.post("/v1/stores/store-1/pricing/preview", json=_cart(currency="JPY"))
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "MISSING_EXCHANGE_RATE"


def test_shipping_options(client: TestClient) -> None:
    options = client.post("/v1/stores/store-1/shipping/options", json=_cart()).json()

    assert [(option["method_id"], Decimal(option["cost"])) for option in options] == [
        ("standard", Decimal("8")),
        ("express", Decimal("15")),
    ]


def test_complete_order_records_usage_once(client: TestClient) -> None:
    url = "/v1/stores/store-1/orders/order-1/complete"
    first = client.post(url, json=_cart(coupon_code="SAVE10")).json()
    assert first["status"] == "recorded"
    assert first["totals"]["discount_total"] == "10.00"

    replay = client.post(url, json=_cart(coupon_code="SAVE10")).json()
    assert replay["status"] == "duplicate"
    assert replay["totals"] == first["totals"]

    # the coupon's single use is spent, so the next order prices without it
    second = client.post(
        "/v1/stores/store-1/orders/order-2/complete",
        json=_cart(coupon_code="SAVE10", customer={"customer_id": "cust-2"}),
    ).json()
    assert second["status"] == "recorded"
    assert second["totals"]["discount_total"] == "0.00"


def test_complete_order_limit_race(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(api_module, "ledger", ExhaustedLedger())
    response = client.post("/v1/stores/store-1/orders/order-1/complete", json=_cart(coupon_code="SAVE10"))

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "USAGE_LIMIT_REACHED"


def test_complete_order_queues_usage_job(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    queue = FakeQueue()
    monkeypatch.setattr(api_module, "queue", queue)

    body = client.post("/v1/stores/store-1/orders/order-9/complete", json=_cart(coupon_code="SAVE10")).json()

    assert body["status"] == "queued"
    payload, job_type = queue.sent[0]
    assert job_type == "usage"
    assert payload["completion"]["order_id"] == "order-9"
    assert payload["completion"]["discounts"][0]["discount_id"] == "save10"
    assert payload["completion"]["discounts"][0]["total_usage_limit"] == 1


def test_api_key_required_when_configured(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(api_module.auth_dependency, "valid_keys", {"secret"})

    assert client.get("/v1/stores/store-1/config").status_code == 401
    assert client.get("/v1/stores/store-1/config", headers={"X-Api-Key": "wrong"}).status_code == 401
    assert client.get("/v1/stores/store-1/config", headers={"X-Api-Key": "secret"}).status_code == 200
    assert client.get("/v1/health").status_code == 200


def test_configured_usage_count_is_the_ledger_baseline(client: TestClient, raw_config: dict) -> None:
    raw_config["discounts"] = [
        {
            "id": "save10",
            "code": "SAVE10",
            "type": "fixed_amount",
            "value": "10",
            "usage_count": 4,
            "total_usage_limit": 5,
        }
    ]
    assert client.put("/v1/stores/store-1/config", json=raw_config).status_code == 200

    granted = []
    for index in range(6):
        body = client.post(
            f"/v1/stores/store-1/orders/order-{index}/complete",
            json=_cart(coupon_code="SAVE10", customer={"customer_id": f"cust-{index}"}),
        ).json()
        assert body["status"] == "recorded"
        granted.append(body["totals"]["discount_total"])

    assert granted == ["10.00"] + ["0.00"] * 5
