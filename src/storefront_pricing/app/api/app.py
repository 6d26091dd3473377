from __future__ import annotations

import logging
import os
import uuid
from typing import Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends, FastAPI, HTTPException

from storefront_pricing.adapters.queue.sqs import SqsAdapter
from storefront_pricing.app.auth.api_key import ApiKeyAuth
from storefront_pricing.app.config.loader import SUPPORTED_SCHEMA_VERSIONS
from storefront_pricing.app.jobs.schema import UsageJob
from storefront_pricing.app.models.config import StoreConfig
from storefront_pricing.app.models.orders import OrderCompletion
from storefront_pricing.engine.canonical.io import to_persisted_totals
from storefront_pricing.engine.canonical.models import PricingContext, PricingResult
from storefront_pricing.engine.pipeline import PricingPipeline
from storefront_pricing.persistence.dynamo_stores import (
    DynamoStoreConfigs,
    InMemoryStoreConfigs,
    StoreConfigRecord,
)
from storefront_pricing.persistence.dynamo_usage import DynamoUsageLedger, InMemoryUsageLedger
from storefront_pricing.util.errors import MissingExchangeRate, NoShippingRateAvailable, PricingError, UsageLimitExceeded
from storefront_pricing.util.metrics import CloudWatchMetrics

stores_table = os.getenv("STORES_TABLE")
usage_table = os.getenv("USAGE_TABLE")
queue_url = os.getenv("USAGE_QUEUE_URL")
api_keys = set(filter(None, os.getenv("API_KEYS", "").split(",")))

stores_repo = DynamoStoreConfigs(stores_table) if stores_table else InMemoryStoreConfigs()
ledger = DynamoUsageLedger(usage_table) if usage_table else InMemoryUsageLedger()
queue = SqsAdapter(queue_url) if queue_url else None
metrics = CloudWatchMetrics.from_env()

logger = logging.getLogger("storefront_pricing.api")

auth_dependency = ApiKeyAuth(api_keys)

app = FastAPI()


def _load_config(store_id: str, config_version: Optional[int] = None) -> StoreConfig:
    if config_version is None:
        record = stores_repo.get_latest(store_id)
    else:
        record = stores_repo.get(store_id, config_version)
    if not record:
        raise HTTPException(status_code=404, detail="Store config not found")
    return StoreConfig.model_validate(record.config)


def _price(config: StoreConfig, context: PricingContext) -> PricingResult:
    usage = ledger.usage_snapshot(
        config.store_id,
        [discount.id for discount in config.discounts],
        context.customer.customer_id,
    )
    try:
        result = PricingPipeline(config).price(context, usage)
    except NoShippingRateAvailable as exc:
        metrics.record_pricing_failure(store_id=config.store_id, error_code=exc.code)
        raise HTTPException(status_code=409, detail={"code": exc.code, "message": str(exc)}) from exc
    except MissingExchangeRate as exc:
        metrics.record_pricing_failure(store_id=config.store_id, error_code=exc.code)
        raise HTTPException(status_code=422, detail={"code": exc.code, "message": str(exc)}) from exc
    except PricingError as exc:
        metrics.record_pricing_failure(store_id=config.store_id, error_code=exc.code)
        raise HTTPException(status_code=400, detail={"code": exc.code, "message": str(exc)}) from exc
    if result.coupon_rejection is not None:
        metrics.record_coupon_rejected(store_id=config.store_id, reason=result.coupon_rejection.reason)
    return result


@app.get("/v1/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.put("/v1/stores/{store_id}/config", dependencies=[Depends(auth_dependency)])
async def put_store_config(store_id: str, config: StoreConfig) -> dict[str, str]:
    if store_id != config.store_id:
        raise HTTPException(status_code=400, detail="store_id mismatch")
    if config.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise HTTPException(status_code=400, detail="Unsupported schema_version")
    existing = stores_repo.get_latest(store_id)
    next_version = existing.config_version + 1 if existing else 1
    record = StoreConfigRecord(
        store_id=store_id, config_version=next_version, config=config.model_dump(mode="json")
    )
    try:
        stores_repo.put(record)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            raise HTTPException(status_code=409, detail="Concurrent config update") from exc
        raise
    return {"store_id": store_id, "config_version": str(record.config_version)}


@app.get("/v1/stores/{store_id}/config", dependencies=[Depends(auth_dependency)])
async def get_store_config(store_id: str, config_version: Optional[int] = None) -> StoreConfig:
    return _load_config(store_id, config_version)


@app.post("/v1/stores/{store_id}/pricing/preview", dependencies=[Depends(auth_dependency)])
async def pricing_preview(store_id: str, context: PricingContext) -> PricingResult:
    return _price(_load_config(store_id), context)


@app.post("/v1/stores/{store_id}/shipping/options", dependencies=[Depends(auth_dependency)])
async def shipping_options(store_id: str, context: PricingContext) -> List[Dict[str, str]]:
    config = _load_config(store_id)
    quotes = PricingPipeline(config).shipping_options(context)
    return [
        {
            "method_id": quote.method_id,
            "name": quote.name or quote.method_id,
            "zone_id": quote.zone_id,
            "cost": str(quote.cost.amount),
            "currency": quote.cost.currency,
        }
        for quote in quotes
    ]


@app.post("/v1/stores/{store_id}/orders/{order_id}/complete", dependencies=[Depends(auth_dependency)])
async def complete_order(store_id: str, order_id: str, context: PricingContext) -> dict:
    config = _load_config(store_id)
    # A retried completion returns the totals first recorded; repricing would
    # see this order's own usage and could drop its discounts.
    recorded_totals = ledger.recorded_totals(store_id, order_id)
    if recorded_totals is not None:
        metrics.record_usage(store_id=store_id, duplicate=True)
        return {"order_id": order_id, "status": "duplicate", "totals": recorded_totals}
    result = _price(config, context)
    totals = to_persisted_totals(result)
    completion = OrderCompletion.from_result(
        config=config,
        order_id=order_id,
        customer_id=context.customer.customer_id,
        result=result,
        totals=totals,
    )
    if queue:
        job = UsageJob(job_id=str(uuid.uuid4()), completion=completion)
        try:
            queue.send(job.model_dump(mode="json"), job_type="usage")
        except (BotoCoreError, ClientError) as exc:
            logger.exception("queue_send_failed")
            raise HTTPException(status_code=503, detail="Queue unavailable") from exc
        return {"order_id": order_id, "status": "queued", "totals": totals}
    try:
        recorded = ledger.record_order_usage(completion)
    except UsageLimitExceeded as exc:
        raise HTTPException(status_code=409, detail={"code": exc.code, "message": str(exc)}) from exc
    metrics.record_usage(store_id=store_id, duplicate=not recorded)
    if not recorded:
        totals = ledger.recorded_totals(store_id, order_id) or totals
    return {"order_id": order_id, "status": "recorded" if recorded else "duplicate", "totals": totals}
