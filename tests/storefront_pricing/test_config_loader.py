from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from storefront_pricing.app.config.loader import load_store_config, parse_store_config


def _raw(tests_data_dir: Path) -> dict:
    return yaml.safe_load((tests_data_dir / "store_config.yaml").read_text(encoding="utf-8"))


def test_loads_fixture(tests_data_dir: Path) -> None:
    config = load_store_config(tests_data_dir / "store_config.yaml")

    assert config.store_id == "store-1"
    assert config.base_currency == "USD"
    assert [zone.id for zone in config.tax_zones] == ["us-ca", "us"]
    assert config.currency("jpy").decimal_places == 0
    assert config.tax_category("food").is_tax_exempt is True
    assert config.tax_category("unknown").code == "standard"
    assert config.shipping_method("express").sort_order == 2


def test_rejects_unsupported_schema_version(tests_data_dir: Path) -> None:
    data = _raw(tests_data_dir)
    data["schema_version"] = 2
    with pytest.raises(ValueError, match="schema_version"):
        parse_store_config(data)


def test_rejects_unknown_enum(tests_data_dir: Path) -> None:
    data = _raw(tests_data_dir)
    data["stacking_policy"] = "greedy"
    with pytest.raises(ValidationError):
        parse_store_config(data)


def test_rejects_percentage_over_hundred(tests_data_dir: Path) -> None:
    data = _raw(tests_data_dir)
    data["discounts"] = [{"id": "too-much", "type": "percentage", "value": "150"}]
    with pytest.raises(ValidationError):
        parse_store_config(data)


def test_increment_rounding_requires_increment(tests_data_dir: Path) -> None:
    data = _raw(tests_data_dir)
    data["currencies"].append({"code": "CHF", "rounding": "to_increment"})
    with pytest.raises(ValidationError):
        parse_store_config(data)
