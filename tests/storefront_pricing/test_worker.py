from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from storefront_pricing.adapters.queue.sqs import SqsMessage
from storefront_pricing.app.jobs.schema import UsageJob
from storefront_pricing.app.models.orders import DiscountUsage, OrderCompletion
from storefront_pricing.persistence.dynamo_usage import InMemoryUsageLedger
from storefront_pricing.scripts.worker import UsageWorker
from storefront_pricing.util.errors import NonRetryableError, RetryableError


class FakeQueue:
    def __init__(self) -> None:
        self.deleted = []

    def delete(self, receipt_handle: str) -> None:
        self.deleted.append(receipt_handle)


class ThrottledLedger(InMemoryUsageLedger):
    def record_order_usage(self, completion):
        raise ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
            "TransactWriteItems",
        )


def _job(order_id: str = "order-1", limit=None) -> UsageJob:
    return UsageJob(
        job_id=f"job-{order_id}",
        completion=OrderCompletion(
            store_id="store-1",
            order_id=order_id,
            customer_id="cust-1",
            discounts=[DiscountUsage(discount_id="SAVE10", total_usage_limit=limit)],
        ),
    )


def _message(job: UsageJob, receive_count: int = 1) -> SqsMessage:
    return SqsMessage(
        receipt_handle=f"rh-{job.job_id}",
        body=job.model_dump(mode="json"),
        receive_count=receive_count,
        job_type="usage",
    )


def test_run_job_records_then_detects_duplicates() -> None:
    ledger = InMemoryUsageLedger()
    worker = UsageWorker(ledger=ledger)

    assert worker.run_job(_job()) is True
    assert worker.run_job(_job()) is False
    assert ledger.usage_snapshot("store-1", ["SAVE10"]).total_counts == {"SAVE10": 1}


def test_run_job_classifies_failures() -> None:
    ledger = InMemoryUsageLedger()
    worker = UsageWorker(ledger=ledger)
    worker.run_job(_job("order-1", limit=1))

    with pytest.raises(NonRetryableError):
        worker.run_job(_job("order-2", limit=1))
    with pytest.raises(RetryableError):
        UsageWorker(ledger=ThrottledLedger()).run_job(_job())


def test_processed_message_is_deleted() -> None:
    queue = FakeQueue()
    ledger = InMemoryUsageLedger()
    worker = UsageWorker(ledger=ledger, queue=queue)

    worker._process_message(_message(_job()))

    assert queue.deleted == ["rh-job-order-1"]
    assert ledger.is_recorded("store-1", "order-1")


def test_invalid_message_is_deleted() -> None:
    queue = FakeQueue()
    worker = UsageWorker(ledger=InMemoryUsageLedger(), queue=queue)

    worker._process_message(SqsMessage(receipt_handle="rh-bad", body={"job_id": "x"}))

    assert queue.deleted == ["rh-bad"]


def test_limit_failure_is_not_retried() -> None:
    queue = FakeQueue()
    ledger = InMemoryUsageLedger()
    worker = UsageWorker(ledger=ledger, queue=queue)
    worker.run_job(_job("order-1", limit=1))

    worker._process_message(_message(_job("order-2", limit=1)))

    assert queue.deleted == ["rh-job-order-2"]
    assert not ledger.is_recorded("store-1", "order-2")


def test_retryable_failure_stays_on_the_queue() -> None:
    queue = FakeQueue()
    worker = UsageWorker(ledger=ThrottledLedger(), queue=queue)

    worker._process_message(_message(_job()))

    assert queue.deleted == []


def test_poison_message_is_dropped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_POISON_MAX_RECEIVES", "3")
    queue = FakeQueue()
    ledger = InMemoryUsageLedger()
    worker = UsageWorker(ledger=ledger, queue=queue)

    worker._process_message(_message(_job(), receive_count=3))

    assert queue.deleted == ["rh-job-order-1"]
    assert not ledger.is_recorded("store-1", "order-1")


def test_from_env_requires_table_and_queue(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("USAGE_TABLE", raising=False)
    monkeypatch.delenv("USAGE_QUEUE_URL", raising=False)
    with pytest.raises(RuntimeError):
        UsageWorker.from_env()
