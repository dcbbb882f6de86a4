from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Optional
from pydantic import Field
from app.models.account import PlanType, new_object_id
from app.models.base import DocumentModel
from app.utils.time import utcnow


class BillingInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"


class SubscriptionRecord(DocumentModel):
    """Detailed payment-processor subscription, one row per external subscription id."""
    id_field: ClassVar[Optional[str]] = "id"

    id: str = Field(default_factory=new_object_id)
    account_id: str
    external_subscription_id: str
    price_id: Optional[str] = None
    plan: PlanType
    interval: BillingInterval = BillingInterval.MONTH
    status: str  # processor status: active, cancelled, past_due, unpaid, incomplete
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    amount: Optional[int] = None  # smallest currency unit
    currency: str = "inr"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
