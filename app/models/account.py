"""Account domain model: identity, subscription, usage ledger and widget settings."""
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar, Optional
from bson import ObjectId
from pydantic import BaseModel, Field, field_validator
from app.models.base import DocumentModel
from app.utils.time import utcnow


class PlanType(str, Enum):
    """Subscription plans. ``basic`` and ``pro`` are accepted as aliases."""
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @classmethod
    def _missing_(cls, value):
        aliases = {"basic": cls.STARTER, "pro": cls.PROFESSIONAL}
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"


class WidgetPosition(str, Enum):
    BOTTOM_RIGHT = "bottom-right"
    BOTTOM_LEFT = "bottom-left"
    TOP_RIGHT = "top-right"
    TOP_LEFT = "top-left"


def new_object_id() -> str:
    return str(ObjectId())


def generate_api_key() -> str:
    return "cb_" + secrets.token_hex(32)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _default_period_end() -> datetime:
    return utcnow() + timedelta(days=30)


class AccountSubscription(BaseModel):
    plan: PlanType = PlanType.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_start: datetime = Field(default_factory=utcnow)
    current_period_end: datetime = Field(default_factory=_default_period_end)
    cancel_at_period_end: bool = False


class AccountUsage(BaseModel):
    messages_this_month: int = Field(default=0, ge=0)
    total_messages: int = Field(default=0, ge=0)
    last_reset_date: datetime = Field(default_factory=utcnow)


class WidgetConfig(BaseModel):
    primary_color: str = "#667eea"
    position: WidgetPosition = WidgetPosition.BOTTOM_RIGHT
    title: str = "AI Assistant"
    subtitle: str = "Online • Usually replies instantly"
    welcome_message: str = "👋 Hi there! I'm your AI assistant. How can I help you today?"
    placeholder: str = "Type your message..."
    branding: bool = True


class Account(DocumentModel):
    id_field: ClassVar[Optional[str]] = "id"

    id: str = Field(default_factory=new_object_id)
    name: str
    email: str
    password_hash: str
    api_key: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    website: Optional[str] = None
    subscription: AccountSubscription = Field(default_factory=AccountSubscription)
    usage: AccountUsage = Field(default_factory=AccountUsage)
    widget_config: WidgetConfig = Field(default_factory=WidgetConfig)
    email_verified: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    last_login_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        return normalize_email(v)

    @property
    def plan(self) -> PlanType:
        return self.subscription.plan

    def to_document(self) -> dict:
        # api_key is omitted rather than stored as null so the unique index skips it
        doc = super().to_document()
        if doc.get("api_key") is None:
            doc.pop("api_key", None)
        return doc
