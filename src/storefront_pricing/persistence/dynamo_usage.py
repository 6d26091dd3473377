"""Discount usage ledger.

Usage counters change only when an order completes, exactly once per
``order_id``. Each completion is one DynamoDB transaction: an order marker
written with ``attribute_not_exists`` plus an ``ADD usage_count`` on every
discount counter (and discount x customer counter), each guarded by what its
limit leaves above the configured ``usage_count`` baseline. The marker also
keeps the totals the order was completed with, so retried completions can
return them unchanged. Pricing previews only read counters through ``usage_snapshot``.
"""
from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from storefront_pricing.app.models.orders import OrderCompletion
from storefront_pricing.engine.discounts.eligibility import UsageSnapshot
from storefront_pricing.util.errors import UsageLimitExceeded


def order_key(store_id: str, order_id: str) -> str:
    return f"STORE#{store_id}#ORDER#{order_id}"


def discount_key(store_id: str, discount_id: str) -> str:
    return f"STORE#{store_id}#DISCOUNT#{discount_id}"


def customer_key(store_id: str, discount_id: str, customer_id: str) -> str:
    return f"{discount_key(store_id, discount_id)}#CUSTOMER#{customer_id}"


class DynamoUsageLedger:
    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        self.table = boto3.resource("dynamodb").Table(table_name)
        self.client = self.table.meta.client
        self._serializer = TypeSerializer()

    def _serialize(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self._serializer.serialize(value) for key, value in values.items()}

    def _counter_update(self, key: str, remaining: Optional[int], **attributes: str) -> Dict[str, Any]:
        names = {"#count": "usage_count"}
        values: Dict[str, Any] = {":one": 1}
        sets = []
        for index, (name, value) in enumerate(sorted(attributes.items())):
            names[f"#a{index}"] = name
            values[f":a{index}"] = value
            sets.append(f"#a{index} = :a{index}")
        update: Dict[str, Any] = {
            "TableName": self.table_name,
            "Key": self._serialize({"pk": key}),
            "UpdateExpression": "ADD #count :one" + (" SET " + ", ".join(sets) if sets else ""),
            "ExpressionAttributeNames": names,
        }
        if remaining is not None:
            values[":remaining"] = remaining
            update["ConditionExpression"] = "attribute_not_exists(#count) OR #count < :remaining"
        update["ExpressionAttributeValues"] = self._serialize(values)
        return {"Update": update}

    def record_order_usage(self, completion: OrderCompletion) -> bool:
        """Apply one completed order's usage; ``False`` when the order was already recorded."""
        store_id = completion.store_id
        items: List[Dict[str, Any]] = [
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": self._serialize(
                        {
                            "pk": order_key(store_id, completion.order_id),
                            "discount_ids": completion.discount_ids,
                            "customer_id": completion.customer_id or "",
                            "completed_at": completion.completed_at.isoformat(),
                            "totals": completion.totals,
                        }
                    ),
                    "ConditionExpression": "attribute_not_exists(pk)",
                }
            }
        ]
        exhausted = [
            usage.discount_id
            for usage in completion.discounts
            if usage.remaining is not None and usage.remaining <= 0
        ]
        if exhausted:
            if self.is_recorded(store_id, completion.order_id):
                return False
            raise UsageLimitExceeded(",".join(exhausted), "This discount has reached its usage limit.")
        for usage in completion.discounts:
            items.append(
                self._counter_update(
                    discount_key(store_id, usage.discount_id),
                    usage.remaining,
                    discount_id=usage.discount_id,
                )
            )
            if completion.customer_id:
                items.append(
                    self._counter_update(
                        customer_key(store_id, usage.discount_id, completion.customer_id),
                        usage.per_customer_limit,
                        discount_id=usage.discount_id,
                        customer_id=completion.customer_id,
                    )
                )
        try:
            self.client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "TransactionCanceledException":
                raise
            if self.is_recorded(store_id, completion.order_id):
                return False
            raise UsageLimitExceeded(
                ",".join(completion.discount_ids),
                f"usage limit reached while completing order {completion.order_id}",
            ) from exc
        return True

    def is_recorded(self, store_id: str, order_id: str) -> bool:
        return self.recorded_totals(store_id, order_id) is not None

    def recorded_totals(self, store_id: str, order_id: str) -> Optional[Dict[str, str]]:
        """Totals stored with the order marker, or ``None`` when the order was never recorded."""
        response = self.table.get_item(Key={"pk": order_key(store_id, order_id)}, ConsistentRead=True)
        item = response.get("Item")
        if item is None:
            return None
        return {key: str(value) for key, value in (item.get("totals") or {}).items()}

    def _count(self, key: str) -> int:
        response = self.table.get_item(Key={"pk": key}, ConsistentRead=True)
        item = response.get("Item")
        if not item:
            return 0
        return int(item.get("usage_count", 0))

    def usage_snapshot(
        self, store_id: str, discount_ids: Iterable[str], customer_id: Optional[str] = None
    ) -> UsageSnapshot:
        totals: Dict[str, int] = {}
        customers: Dict[str, int] = {}
        for discount_id in discount_ids:
            totals[discount_id] = self._count(discount_key(store_id, discount_id))
            if customer_id:
                customers[discount_id] = self._count(customer_key(store_id, discount_id, customer_id))
        return UsageSnapshot(total_counts=totals, customer_counts=customers)


class InMemoryUsageLedger:
    """Process-local ledger with the same contract, serialized by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: Dict[Tuple[str, str], Dict[str, str]] = {}
        self._counts: Dict[str, int] = {}

    def record_order_usage(self, completion: OrderCompletion) -> bool:
        store_id = completion.store_id
        with self._lock:
            if (store_id, completion.order_id) in self._orders:
                return False
            increments: List[str] = []
            for usage in completion.discounts:
                key = discount_key(store_id, usage.discount_id)
                if usage.remaining is not None and self._counts.get(key, 0) >= usage.remaining:
                    raise UsageLimitExceeded(usage.discount_id, "This discount has reached its usage limit.")
                increments.append(key)
                if completion.customer_id:
                    key = customer_key(store_id, usage.discount_id, completion.customer_id)
                    if usage.per_customer_limit is not None and self._counts.get(key, 0) >= usage.per_customer_limit:
                        raise UsageLimitExceeded(
                            usage.discount_id,
                            "This discount has been used the maximum number of times by this customer.",
                        )
                    increments.append(key)
            for key in increments:
                self._counts[key] = self._counts.get(key, 0) + 1
            self._orders[(store_id, completion.order_id)] = dict(completion.totals)
        return True

    def is_recorded(self, store_id: str, order_id: str) -> bool:
        with self._lock:
            return (store_id, order_id) in self._orders

    def recorded_totals(self, store_id: str, order_id: str) -> Optional[Dict[str, str]]:
        with self._lock:
            totals = self._orders.get((store_id, order_id))
        return dict(totals) if totals is not None else None

    def usage_snapshot(
        self, store_id: str, discount_ids: Iterable[str], customer_id: Optional[str] = None
    ) -> UsageSnapshot:
        with self._lock:
            totals = {
                discount_id: self._counts.get(discount_key(store_id, discount_id), 0)
                for discount_id in discount_ids
            }
            customers: Dict[str, int] = {}
            if customer_id:
                customers = {
                    discount_id: self._counts.get(customer_key(store_id, discount_id, customer_id), 0)
                    for discount_id in totals
                }
        return UsageSnapshot(total_counts=totals, customer_counts=customers)
