from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel
from app.models.account import PlanType, SubscriptionStatus
from app.schemas.account import UsageResponse


class PlanResponse(BaseModel):
    id: PlanType
    name: str
    price: int
    currency: str
    interval: str
    description: str
    limits: Dict[str, Any]


class PlansResponse(BaseModel):
    currency: str = "INR"
    plans: List[PlanResponse]


class SubscriptionDetails(BaseModel):
    plan: PlanType
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    usage: UsageResponse
    limits: Dict[str, Any]
