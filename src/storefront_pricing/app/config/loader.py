from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml

from storefront_pricing.app.models.config import StoreConfig

SUPPORTED_SCHEMA_VERSIONS = {1}


def parse_store_config(data: Dict[str, Any]) -> StoreConfig:
    config = StoreConfig.model_validate(data)
    if config.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"Unsupported schema_version {config.schema_version}")
    return config


def load_store_config(path: str | Path) -> StoreConfig:
    data: Dict[str, Any]
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return parse_store_config(data)
