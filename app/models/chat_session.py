"""Chat session domain model.

A session owns an append-only message list; ``summary`` is always derived from
that list so the two can never disagree.
"""
import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from app.models.base import DocumentModel
from app.utils.time import advance, utcnow


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    TIMEOUT = "timeout"


def generate_message_id() -> str:
    return f"msg_{secrets.token_hex(8)}_{int(time.time() * 1000)}"


class TokenUsage(BaseModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0


class MessageMetadata(BaseModel):
    response_time: Optional[int] = None  # milliseconds
    model: Optional[str] = None
    tokens: Optional[TokenUsage] = None
    cost: Optional[float] = None
    error: Optional[str] = None


class ChatMessage(BaseModel):
    message_id: str = Field(default_factory=generate_message_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


class SessionSummary(BaseModel):
    total_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    system_messages: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0


def summarize(messages: List[ChatMessage]) -> SessionSummary:
    """Recompute the session summary from the full message list."""
    summary = SessionSummary(total_messages=len(messages))
    for msg in messages:
        if msg.role == MessageRole.USER:
            summary.user_messages += 1
        elif msg.role == MessageRole.ASSISTANT:
            summary.assistant_messages += 1
        else:
            summary.system_messages += 1
        if msg.metadata.tokens:
            summary.total_tokens += msg.metadata.tokens.total
        if msg.metadata.cost:
            summary.total_cost += msg.metadata.cost
    return summary


class WebsiteContext(BaseModel):
    domain: str = "unknown"
    page: Optional[str] = None
    title: Optional[str] = None


class VisitorContext(BaseModel):
    fingerprint: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    timezone: Optional[str] = None


class SessionContext(BaseModel):
    """Best-effort context captured when a session is created."""
    website: WebsiteContext = Field(default_factory=WebsiteContext)
    visitor: VisitorContext = Field(default_factory=VisitorContext)


class SessionRating(BaseModel):
    score: int = Field(..., ge=1, le=5)
    feedback: str = ""
    rated_at: datetime = Field(default_factory=utcnow)


class ChatSession(DocumentModel):
    session_id: str
    account_id: str
    website: WebsiteContext = Field(default_factory=WebsiteContext)
    visitor: VisitorContext = Field(default_factory=VisitorContext)
    messages: List[ChatMessage] = Field(default_factory=list)
    summary: SessionSummary = Field(default_factory=SessionSummary)
    status: SessionStatus = SessionStatus.ACTIVE
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration: Optional[int] = None  # seconds
    rating: Optional[SessionRating] = None
    tags: List[str] = Field(default_factory=list)
    last_activity: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @classmethod
    def start(cls, session_id: str, account_id: str, context: Optional[SessionContext] = None,
              now: Optional[datetime] = None) -> "ChatSession":
        now = now or utcnow()
        context = context or SessionContext()
        return cls(
            session_id=session_id,
            account_id=account_id,
            website=context.website.model_copy(),
            visitor=context.visitor.model_copy(),
            start_time=now,
            last_activity=now,
            created_at=now,
            updated_at=now,
        )

    def is_active(self, cutoff: datetime) -> bool:
        return self.status == SessionStatus.ACTIVE and self.last_activity >= cutoff

    def add_message(self, role: MessageRole, content: str,
                    metadata: Optional[Dict[str, Any]] = None,
                    now: Optional[datetime] = None) -> ChatMessage:
        """Append a message in place, advancing last_activity and the summary."""
        stamp = advance(self.last_activity, now)
        message = ChatMessage(
            role=MessageRole(role),
            content=content,
            timestamp=stamp,
            metadata=MessageMetadata.model_validate(metadata or {}),
        )
        self.messages.append(message)
        self.summary = summarize(self.messages)
        self.last_activity = stamp
        self.updated_at = stamp
        return message

    def end(self, now: Optional[datetime] = None) -> None:
        now = advance(self.last_activity, now)
        self.status = SessionStatus.ENDED
        self.end_time = now
        self.duration = int((now - self.start_time).total_seconds())
        self.last_activity = now
        self.updated_at = now

    def stamp_created(self, now: datetime) -> None:
        self.start_time = now
        self.last_activity = now
        self.created_at = now
        self.updated_at = now
