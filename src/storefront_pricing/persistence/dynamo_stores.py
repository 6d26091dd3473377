from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key


@dataclass
class StoreConfigRecord:
    store_id: str
    config_version: int
    config: dict


class DynamoStoreConfigs:
    """Versioned store configuration snapshots keyed by (store_id, config_version)."""

    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)

    def put(self, record: StoreConfigRecord) -> None:
        self.table.put_item(
            Item=record.__dict__,
            ConditionExpression="attribute_not_exists(config_version)",
        )

    def get(self, store_id: str, config_version: int) -> Optional[StoreConfigRecord]:
        response = self.table.get_item(Key={"store_id": store_id, "config_version": config_version})
        item = response.get("Item")
        if not item:
            return None
        return StoreConfigRecord(
            store_id=item["store_id"], config_version=int(item["config_version"]), config=item["config"]
        )

    def get_latest(self, store_id: str) -> Optional[StoreConfigRecord]:
        response = self.table.query(
            KeyConditionExpression=Key("store_id").eq(store_id),
            ScanIndexForward=False,
            Limit=1,
        )
        items = response.get("Items", [])
        if not items:
            return None
        item = items[0]
        return StoreConfigRecord(
            store_id=item["store_id"], config_version=int(item["config_version"]), config=item["config"]
        )


class InMemoryStoreConfigs:
    def __init__(self) -> None:
        self._data: Dict[str, List[StoreConfigRecord]] = {}

    def put(self, record: StoreConfigRecord) -> None:
        self._data.setdefault(record.store_id, []).append(record)

    def get(self, store_id: str, config_version: int) -> Optional[StoreConfigRecord]:
        for record in self._data.get(store_id, []):
            if record.config_version == config_version:
                return record
        return None

    def get_latest(self, store_id: str) -> Optional[StoreConfigRecord]:
        records = self._data.get(store_id)
        if not records:
            return None
        return max(records, key=lambda record: record.config_version)
