from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from storefront_pricing.util.logging import get_logger


@dataclass(frozen=True)
class MetricDimension:
    name: str
    value: str


class CloudWatchMetrics:
    def __init__(self, *, namespace: str, enabled: bool) -> None:
        self.namespace = namespace
        self.enabled = enabled
        self.client = boto3.client("cloudwatch") if enabled else None
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_env(cls) -> "CloudWatchMetrics":
        enabled = os.getenv("CLOUDWATCH_METRICS_ENABLED", "false").lower() == "true"
        namespace = os.getenv("CLOUDWATCH_METRICS_NAMESPACE", "StorefrontPricing")
        return cls(namespace=namespace, enabled=enabled)

    def _put_metric(
        self,
        *,
        name: str,
        value: float,
        unit: str = "Count",
        dimensions: Optional[Iterable[MetricDimension]] = None,
    ) -> None:
        if not self.enabled or not self.client:
            return
        payload = {
            "MetricName": name,
            "Value": value,
            "Unit": unit,
        }
        if dimensions:
            payload["Dimensions"] = [
                {"Name": dimension.name, "Value": dimension.value} for dimension in dimensions
            ]
        try:
            self.client.put_metric_data(
                Namespace=self.namespace,
                MetricData=[payload],
            )
        except (BotoCoreError, ClientError) as exc:
            self.logger.warning("cloudwatch_metric_failed", extra={"error": str(exc), "metric": name})

    def record_pricing_failure(self, *, store_id: str, error_code: str) -> None:
        self._put_metric(
            name="PricingFailed",
            value=1.0,
            dimensions=[
                MetricDimension(name="store_id", value=store_id),
                MetricDimension(name="error_code", value=error_code),
            ],
        )

    def record_coupon_rejected(self, *, store_id: str, reason: str) -> None:
        self._put_metric(
            name="CouponRejected",
            value=1.0,
            dimensions=[
                MetricDimension(name="store_id", value=store_id),
                MetricDimension(name="reason", value=reason),
            ],
        )

    def record_usage(self, *, store_id: str, duplicate: bool) -> None:
        self._put_metric(
            name="DiscountUsageDuplicate" if duplicate else "DiscountUsageRecorded",
            value=1.0,
            dimensions=[MetricDimension(name="store_id", value=store_id)],
        )

    def record_worker_error(self, *, error_type: str) -> None:
        self._put_metric(
            name="WorkerError",
            value=1.0,
            dimensions=[MetricDimension(name="error_type", value=error_type)],
        )
