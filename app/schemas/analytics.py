from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class AnalyticsResponse(BaseModel):
    total_sessions: int = 0
    total_messages: int = 0
    total_user_messages: int = 0
    total_assistant_messages: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_messages_per_session: float = 0.0
    avg_duration: float = 0.0
    avg_rating: float = 0.0
    total_message_logs: int = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
