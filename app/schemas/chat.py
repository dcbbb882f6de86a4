from datetime import datetime
from typing import List, Optional
from pydantic import AliasChoices, BaseModel, Field
from app.models.chat_session import (
    ChatMessage,
    SessionRating,
    SessionStatus,
    SessionSummary,
    VisitorContext,
    WebsiteContext,
)
from .base import BaseSchema, TimestampMixin

MAX_MESSAGE_LENGTH = 4000


class ChatAskRequest(BaseSchema):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH, description="Visitor message")
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        validation_alias=AliasChoices("session_id", "sessionId"),
        description="Client-generated session id",
    )
    website: Optional[str] = Field(None, description="Domain the widget is embedded on")
    page: Optional[str] = None
    title: Optional[str] = None
    fingerprint: Optional[str] = None
    timezone: Optional[str] = None


class ChatAskResponse(BaseModel):
    response: str
    session_id: str
    timestamp: datetime


class RatingRequest(BaseModel):
    score: int = Field(..., ge=1, le=5)
    feedback: str = Field("", max_length=2000)


class SessionHistoryResponse(BaseSchema, TimestampMixin):
    session_id: str
    status: SessionStatus
    website: WebsiteContext
    visitor: VisitorContext
    messages: List[ChatMessage]
    summary: SessionSummary
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    rating: Optional[SessionRating] = None
    last_activity: datetime


class MessageLogResponse(BaseSchema):
    id: str
    session_id: Optional[str] = None
    website: Optional[str] = None
    user_message: str
    ai_response: str
    response_time: Optional[int] = None
    timestamp: datetime
    error: Optional[str] = None
