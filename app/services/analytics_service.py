import logging
from datetime import datetime
from typing import Optional

from app.core.exceptions import ValidationError
from app.schemas.analytics import AnalyticsResponse

logger = logging.getLogger("analytics_service")

AVERAGE_FIELDS = ("avg_messages_per_session", "avg_duration", "avg_rating")


class AnalyticsService:
    async def get_analytics(self, storage, account_id: str, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> AnalyticsResponse:
        """Session totals and averages plus the message-log count for a date range.

        Either bound may be omitted. Averages with nothing to average are 0.
        """
        if start and end and start > end:
            raise ValidationError("start_date must not be after end_date")
        stats = await storage.session_stats(account_id, start=start, end=end)
        for field in AVERAGE_FIELDS:
            if stats.get(field) is None:
                stats[field] = 0.0
        total_logs = await storage.count_message_logs(account_id, start=start, end=end)
        return AnalyticsResponse(**stats, total_message_logs=total_logs, start_date=start, end_date=end)


analytics_service = AnalyticsService()
