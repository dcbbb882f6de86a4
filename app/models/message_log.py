from datetime import datetime
from typing import ClassVar, Optional
from pydantic import Field
from app.models.account import new_object_id
from app.models.base import DocumentModel
from app.utils.time import utcnow


class MessageLog(DocumentModel):
    """Flat, immutable record of one chat turn, kept for analytics."""
    id_field: ClassVar[Optional[str]] = "id"

    id: str = Field(default_factory=new_object_id)
    account_id: str
    session_id: Optional[str] = None
    website: Optional[str] = None
    user_message: str
    ai_response: str
    response_time: Optional[int] = None  # milliseconds
    timestamp: datetime = Field(default_factory=utcnow)
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    error: Optional[str] = None
