import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from freezegun import freeze_time

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from storefront_pricing.app.config.loader import load_store_config  # noqa: E402
from storefront_pricing.engine.canonical.models import PricingContext  # noqa: E402

DEFAULT_ENV = {
    "AWS_ACCESS_KEY_ID": "test-access-key",
    "AWS_SECRET_ACCESS_KEY": "test-secret-key",
    "AWS_SESSION_TOKEN": "test-session",
    "AWS_DEFAULT_REGION": "us-east-1",
}

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def tests_data_dir(project_root: Path) -> Path:
    return project_root / "tests" / "mock"


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    for key, value in DEFAULT_ENV.items():
        monkeypatch.setenv(key, value)
    yield


@pytest.fixture
def store_config(tests_data_dir: Path):
    return load_store_config(tests_data_dir / "store_config.yaml")


@pytest.fixture
def make_context():
    def _make(*lines: dict, **overrides) -> PricingContext:
        data = {
            "cart_id": "cart-1",
            "currency": "USD",
            "now": NOW,
            "shipping_address": {"country": "US", "state": "CA", "postal_code": "90210", "city": "Beverly Hills"},
            "lines": list(lines)
            or [{"line_id": "l1", "product_id": "p1", "quantity": 1, "unit_price": "100"}],
        }
        data.update(overrides)
        return PricingContext.model_validate(data)

    return _make


@pytest.fixture
def freezer():
    with freeze_time("2025-06-01T12:00:00Z") as frozen_datetime:
        yield frozen_datetime
