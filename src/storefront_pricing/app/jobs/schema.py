from __future__ import annotations

from pydantic import BaseModel

from storefront_pricing.app.models.orders import OrderCompletion


class UsageJob(BaseModel):
    job_id: str
    completion: OrderCompletion
