"""Storage interface shared by the MongoDB and in-memory backends."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from app.models.account import Account
from app.models.chat_session import ChatMessage, ChatSession, SessionRating
from app.models.message_log import MessageLog
from app.models.subscription import SubscriptionRecord


class StorageBackend(Protocol):
    """
    Port for all persistent state of the chat service.

    Callers never branch on the backend: both implementations enforce the same
    uniqueness rules and the same active-session rule (status active and
    last activity inside the retention window).
    """

    name: str

    # ----- accounts -----

    async def create_account(self, account: Account) -> Account:
        """
        Store a new account.

        Raises:
            AccountAlreadyExists: email or api key already taken
        """
        ...

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        """Case-insensitive lookup."""
        ...

    async def find_account_by_api_key(self, api_key: str) -> Optional[Account]:
        ...

    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        ...

    async def find_account_by_customer_id(self, customer_id: str) -> Optional[Account]:
        """Lookup by payment-processor customer id."""
        ...

    async def update_account(self, account_id: str, fields: Dict[str, Any]) -> Optional[Account]:
        """
        Apply a partial update.

        Args:
            account_id: Account to update
            fields: Mapping of dotted paths (``subscription.status``) to values

        Returns:
            Updated account, or None if it does not exist
        """
        ...

    async def list_accounts(self, limit: int = 50, offset: int = 0) -> List[Account]:
        """Newest first."""
        ...

    async def increment_usage(self, account_id: str) -> Optional[Account]:
        """Atomically add one to the monthly and lifetime message counters."""
        ...

    async def reset_monthly_usage(self, account_id: str) -> Optional[Account]:
        ...

    # ----- chat sessions -----

    async def create_session(self, session: ChatSession) -> ChatSession:
        """
        Store a new active session, or return the one already active.

        A stale active record with the same id is moved to ``timeout`` first.

        Raises:
            SessionNotFound: the id belongs to another account
        """
        ...

    async def find_active_session(self, session_id: str, account_id: Optional[str] = None) -> Optional[ChatSession]:
        """
        Return the session only if it is active, inside the retention window
        and (when ``account_id`` is given) owned by that account.
        """
        ...

    async def find_session(self, session_id: str, account_id: str) -> Optional[ChatSession]:
        """Most recent record for this id owned by the account, any status."""
        ...

    async def append_message(self, session_id: str, role: str, content: str,
                             metadata: Optional[Dict[str, Any]] = None) -> ChatMessage:
        """
        Append a message to the active session and recompute its summary as one
        atomic unit.

        Raises:
            SessionNotFound: no active session with this id
            ConcurrentWriteConflict: retries exhausted
        """
        ...

    async def end_session(self, session_id: str, account_id: str) -> Optional[ChatSession]:
        ...

    async def rate_session(self, session_id: str, account_id: str, rating: SessionRating) -> Optional[ChatSession]:
        """
        Raises:
            SessionAlreadyRated: a rating is already attached
        """
        ...

    async def expire_sessions(self) -> int:
        """Move active sessions past the retention window to ``timeout``."""
        ...

    async def session_stats(self, account_id: str, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> Dict[str, Any]:
        """Sums and averages over the account's sessions created in range."""
        ...

    # ----- message logs -----

    async def insert_message_log(self, log: MessageLog) -> MessageLog:
        ...

    async def list_message_logs(self, account_id: str, limit: int = 50) -> List[MessageLog]:
        """Newest first."""
        ...

    async def count_message_logs(self, account_id: str, start: Optional[datetime] = None,
                                 end: Optional[datetime] = None) -> int:
        ...

    # ----- subscriptions -----

    async def create_subscription_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        ...

    async def find_subscription_by_external_id(self, external_id: str) -> Optional[SubscriptionRecord]:
        ...

    async def update_subscription_record(self, external_id: str, fields: Dict[str, Any]) -> Optional[SubscriptionRecord]:
        ...

    # ----- lifecycle -----

    def status(self) -> Dict[str, Any]:
        """Backend type, connection state and whether this is degraded mode."""
        ...

    async def close(self) -> None:
        ...


EMPTY_SESSION_STATS = {
    "total_sessions": 0,
    "total_messages": 0,
    "total_user_messages": 0,
    "total_assistant_messages": 0,
    "total_tokens": 0,
    "total_cost": 0.0,
    "avg_messages_per_session": None,
    "avg_duration": None,
    "avg_rating": None,
}
