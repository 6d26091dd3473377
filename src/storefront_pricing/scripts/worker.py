from __future__ import annotations

import os
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Optional, Union

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from storefront_pricing.adapters.queue.sqs import SqsAdapter, SqsMessage
from storefront_pricing.app.jobs.schema import UsageJob
from storefront_pricing.persistence.dynamo_usage import DynamoUsageLedger, InMemoryUsageLedger
from storefront_pricing.util.errors import NonRetryableError, RetryableError, UsageLimitExceeded
from storefront_pricing.util.logging import get_logger, log_event
from storefront_pricing.util.metrics import CloudWatchMetrics

Ledger = Union[DynamoUsageLedger, InMemoryUsageLedger]


class UsageWorker:
    """Single writer applying completed orders to the discount usage ledger."""

    def __init__(
        self,
        *,
        ledger: Ledger,
        queue: Optional[SqsAdapter] = None,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        self.ledger = ledger
        self.queue = queue
        self.logger = get_logger(self.__class__.__name__)
        self.metrics = metrics or CloudWatchMetrics.from_env()
        self.poison_max_receives = int(os.getenv("WORKER_POISON_MAX_RECEIVES", "5"))

    @classmethod
    def from_env(cls) -> "UsageWorker":
        usage_table = os.getenv("USAGE_TABLE")
        queue_url = os.getenv("USAGE_QUEUE_URL")
        if not usage_table or not queue_url:
            raise RuntimeError("USAGE_TABLE and USAGE_QUEUE_URL must be set")
        return cls(ledger=DynamoUsageLedger(usage_table), queue=SqsAdapter(queue_url))

    def run_job(self, job: UsageJob) -> bool:
        completion = job.completion
        try:
            recorded = self.ledger.record_order_usage(completion)
        except UsageLimitExceeded as exc:
            raise NonRetryableError(str(exc)) from exc
        except (BotoCoreError, ClientError) as exc:
            raise RetryableError(str(exc)) from exc
        self.metrics.record_usage(store_id=completion.store_id, duplicate=not recorded)
        log_event(
            self.logger,
            "usage_recorded" if recorded else "usage_duplicate",
            job_id=job.job_id,
            store_id=completion.store_id,
            order_id=completion.order_id,
            discount_ids=completion.discount_ids,
        )
        return recorded

    def _delete(self, message: SqsMessage) -> None:
        try:
            self.queue.delete(message.receipt_handle)
        except (BotoCoreError, ClientError) as delete_exc:
            self.metrics.record_worker_error(error_type="queue_delete_error")
            log_event(self.logger, "queue_delete_error", error=str(delete_exc))

    def _process_message(self, message: SqsMessage) -> None:
        if not self.queue:
            raise RuntimeError("Queue URL not configured")
        try:
            job = UsageJob.model_validate(message.body)
        except ValidationError as exc:
            self.metrics.record_worker_error(error_type="invalid_job")
            log_event(self.logger, "invalid_job", error=str(exc), receive_count=message.receive_count)
            self._delete(message)
            return
        if message.receive_count >= self.poison_max_receives:
            self.metrics.record_worker_error(error_type="poison_job")
            log_event(
                self.logger,
                "poison_job_detected",
                job_id=job.job_id,
                order_id=job.completion.order_id,
                receive_count=message.receive_count,
            )
            self._delete(message)
            return
        try:
            self.run_job(job)
        except NonRetryableError as exc:
            self._delete(message)
            log_event(
                self.logger,
                "usage_failed",
                job_id=job.job_id,
                order_id=job.completion.order_id,
                error=str(exc),
            )
        except RetryableError as exc:
            self.metrics.record_worker_error(error_type="usage_retryable_error")
            log_event(
                self.logger,
                "usage_retryable_error",
                job_id=job.job_id,
                order_id=job.completion.order_id,
                error=str(exc),
            )
        else:
            self._delete(message)

    def run_forever(self) -> None:
        if not self.queue:
            raise RuntimeError("Queue URL not configured")
        worker_concurrency = max(1, int(os.getenv("WORKER_CONCURRENCY", "1")))
        with ThreadPoolExecutor(max_workers=worker_concurrency) as executor:
            futures = set()
            while True:
                completed = {future for future in futures if future.done()}
                if completed:
                    for future in completed:
                        future.result()
                    futures -= completed
                if len(futures) >= worker_concurrency:
                    done, futures = wait(futures, return_when=FIRST_COMPLETED)
                    for future in done:
                        future.result()
                try:
                    message = self.queue.receive()
                except (BotoCoreError, ClientError) as exc:
                    self.metrics.record_worker_error(error_type="queue_receive_error")
                    log_event(self.logger, "queue_receive_error", error=str(exc))
                    continue
                if not message:
                    continue
                futures.add(executor.submit(self._process_message, message))


def main() -> None:
    UsageWorker.from_env().run_forever()


if __name__ == "__main__":
    main()
