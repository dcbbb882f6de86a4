from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field
from app.models.account import AccountSubscription, AccountUsage, PlanType, WidgetConfig, WidgetPosition
from .base import BaseSchema


class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    phone: Optional[str] = None
    company: Optional[str] = None
    website: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class WidgetConfigUpdate(BaseModel):
    primary_color: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    position: Optional[WidgetPosition] = None
    title: Optional[str] = Field(None, max_length=100)
    subtitle: Optional[str] = Field(None, max_length=200)
    welcome_message: Optional[str] = Field(None, max_length=500)
    placeholder: Optional[str] = Field(None, max_length=100)
    branding: Optional[bool] = None


class AccountResponse(BaseSchema):
    id: str
    name: str
    email: str
    api_key: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    website: Optional[str] = None
    subscription: AccountSubscription
    usage: AccountUsage
    widget_config: WidgetConfig
    email_verified: bool = False
    created_at: datetime
    last_login_at: datetime


class AdminAccountResponse(BaseSchema):
    """Account as listed to administrators; carries no credential material."""
    id: str
    name: str
    email: str
    company: Optional[str] = None
    website: Optional[str] = None
    subscription: AccountSubscription
    usage: AccountUsage
    created_at: datetime
    last_login_at: datetime


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountResponse


class UsageResponse(BaseModel):
    plan: PlanType
    messages_this_month: int
    total_messages: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    last_reset_date: datetime


class PlanChangeRequest(BaseModel):
    plan: PlanType
