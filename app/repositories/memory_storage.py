"""In-memory storage backend.

Process-lifetime only: nothing survives a restart. Used when MongoDB is not
reachable at startup, and in tests. Enforces the same uniqueness and
active-session rules as the MongoDB backend and hands out copies so callers
cannot mutate stored state.
"""

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from app.core.exceptions import AccountAlreadyExists, SessionAlreadyRated, SessionNotFound
from app.models.account import Account, normalize_email
from app.models.chat_session import ChatMessage, ChatSession, SessionRating, SessionStatus
from app.models.message_log import MessageLog
from app.models.subscription import SubscriptionRecord
from app.repositories.base import EMPTY_SESSION_STATS
from app.utils.locks import KeyedLocks
from app.utils.time import advance, utcnow

logger = logging.getLogger("memory_storage")


def _apply_fields(model, fields: Dict[str, Any]):
    """Return a copy of ``model`` with dotted-path updates applied and re-validated."""
    data = model.model_dump(mode="python")
    for path, value in fields.items():
        target = data
        *parents, leaf = path.split(".")
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = value
    return type(model).model_validate(data)


def _in_range(value: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def _average(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class InMemoryStorage:
    name = "memory"

    def __init__(self, session_ttl: timedelta = timedelta(hours=24), message_log_cap: int = 1000,
                 clock: Callable[[], datetime] = utcnow, degraded: bool = False):
        self.session_ttl = session_ttl
        self.degraded = degraded
        self._clock = clock
        self._accounts: Dict[str, Account] = {}
        self._email_index: Dict[str, str] = {}
        self._api_key_index: Dict[str, str] = {}
        self._sessions: Dict[str, ChatSession] = {}
        self._retired_sessions: List[ChatSession] = []
        self._message_logs: Deque[MessageLog] = deque(maxlen=message_log_cap)
        self._subscriptions: Dict[str, SubscriptionRecord] = {}
        self._session_locks = KeyedLocks()
        self._account_locks = KeyedLocks()

    def _cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or self._clock()) - self.session_ttl

    # ----- accounts -----

    def _check_unique(self, account: Account) -> None:
        owner = self._email_index.get(account.email)
        if owner is not None and owner != account.id:
            raise AccountAlreadyExists(f"Account with email {account.email} already exists")
        if account.api_key:
            owner = self._api_key_index.get(account.api_key)
            if owner is not None and owner != account.id:
                raise AccountAlreadyExists("API key already in use", code="API_KEY_EXISTS")

    def _index(self, old: Optional[Account], new: Account) -> None:
        if old is not None:
            self._email_index.pop(old.email, None)
            if old.api_key:
                self._api_key_index.pop(old.api_key, None)
        self._email_index[new.email] = new.id
        if new.api_key:
            self._api_key_index[new.api_key] = new.id

    def _get_account(self, account_id: Optional[str]) -> Optional[Account]:
        account = self._accounts.get(account_id) if account_id else None
        return account.model_copy(deep=True) if account else None

    async def create_account(self, account: Account) -> Account:
        if account.id in self._accounts:
            raise AccountAlreadyExists(f"Account {account.id} already exists")
        self._check_unique(account)
        stored = account.model_copy(deep=True)
        self._accounts[stored.id] = stored
        self._index(None, stored)
        logger.info(f"Created account {stored.id}")
        return stored.model_copy(deep=True)

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        return self._get_account(self._email_index.get(normalize_email(email)))

    async def find_account_by_api_key(self, api_key: str) -> Optional[Account]:
        return self._get_account(self._api_key_index.get(api_key))

    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        return self._get_account(account_id)

    async def find_account_by_customer_id(self, customer_id: str) -> Optional[Account]:
        for account in self._accounts.values():
            if account.subscription.stripe_customer_id == customer_id:
                return account.model_copy(deep=True)
        return None

    async def update_account(self, account_id: str, fields: Dict[str, Any]) -> Optional[Account]:
        async with self._account_locks.hold(account_id):
            current = self._accounts.get(account_id)
            if current is None:
                return None
            updated = _apply_fields(current, fields)
            self._check_unique(updated)
            self._accounts[account_id] = updated
            self._index(current, updated)
            return updated.model_copy(deep=True)

    async def list_accounts(self, limit: int = 50, offset: int = 0) -> List[Account]:
        ordered = sorted(self._accounts.values(), key=lambda a: a.created_at, reverse=True)
        return [a.model_copy(deep=True) for a in ordered[offset:offset + limit]]

    async def increment_usage(self, account_id: str) -> Optional[Account]:
        async with self._account_locks.hold(account_id):
            account = self._accounts.get(account_id)
            if account is None:
                return None
            account.usage.messages_this_month += 1
            account.usage.total_messages += 1
            return account.model_copy(deep=True)

    async def reset_monthly_usage(self, account_id: str) -> Optional[Account]:
        async with self._account_locks.hold(account_id):
            account = self._accounts.get(account_id)
            if account is None:
                return None
            account.usage.messages_this_month = 0
            account.usage.last_reset_date = self._clock()
            return account.model_copy(deep=True)

    # ----- chat sessions -----

    def _retire(self, session: ChatSession, now: datetime) -> None:
        if session.status == SessionStatus.ACTIVE:
            session.status = SessionStatus.TIMEOUT
            session.updated_at = now
        self._retired_sessions.append(session)

    async def create_session(self, session: ChatSession) -> ChatSession:
        async with self._session_locks.hold(session.session_id):
            now = self._clock()
            existing = self._sessions.get(session.session_id)
            if existing is not None:
                if existing.account_id != session.account_id:
                    logger.warning(f"Session {session.session_id} requested by non-owner account {session.account_id}")
                    raise SessionNotFound(f"Session {session.session_id} not found")
                if existing.is_active(self._cutoff(now)):
                    return existing.model_copy(deep=True)
                self._retire(existing, now)
            stored = session.model_copy(deep=True)
            stored.stamp_created(now)
            self._sessions[stored.session_id] = stored
            logger.info(f"Created session {stored.session_id} for account {stored.account_id}")
            return stored.model_copy(deep=True)

    async def find_active_session(self, session_id: str, account_id: Optional[str] = None) -> Optional[ChatSession]:
        session = self._sessions.get(session_id)
        if session is None or not session.is_active(self._cutoff()):
            return None
        if account_id is not None and session.account_id != account_id:
            return None
        return session.model_copy(deep=True)

    async def find_session(self, session_id: str, account_id: str) -> Optional[ChatSession]:
        session = self._sessions.get(session_id)
        if session is None:
            retired = [s for s in self._retired_sessions if s.session_id == session_id]
            session = max(retired, key=lambda s: s.created_at) if retired else None
        if session is None or session.account_id != account_id:
            return None
        return session.model_copy(deep=True)

    async def append_message(self, session_id: str, role: str, content: str,
                             metadata: Optional[Dict[str, Any]] = None) -> ChatMessage:
        async with self._session_locks.hold(session_id):
            now = self._clock()
            session = self._sessions.get(session_id)
            if session is None or not session.is_active(self._cutoff(now)):
                raise SessionNotFound(f"Session {session_id} not found or expired")
            working = session.model_copy(deep=True)
            message = working.add_message(role, content, metadata, now=now)
            working.version += 1
            self._sessions[session_id] = working
            return message.model_copy(deep=True)

    async def end_session(self, session_id: str, account_id: str) -> Optional[ChatSession]:
        async with self._session_locks.hold(session_id):
            session = self._sessions.get(session_id)
            now = self._clock()
            if session is None or session.account_id != account_id or not session.is_active(self._cutoff(now)):
                return None
            working = session.model_copy(deep=True)
            working.end(now)
            working.version += 1
            self._sessions[session_id] = working
            return working.model_copy(deep=True)

    async def rate_session(self, session_id: str, account_id: str, rating: SessionRating) -> Optional[ChatSession]:
        async with self._session_locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None or session.account_id != account_id:
                return None
            if session.rating is not None:
                raise SessionAlreadyRated(f"Session {session_id} has already been rated")
            working = session.model_copy(deep=True)
            working.rating = rating.model_copy()
            working.updated_at = advance(working.updated_at, self._clock())
            working.version += 1
            self._sessions[session_id] = working
            return working.model_copy(deep=True)

    async def expire_sessions(self) -> int:
        """Time out stale active sessions.

        Timed-out records stay readable until the next sweep reclaims them.
        """
        now = self._clock()
        cutoff = self._cutoff(now)
        self._retired_sessions = [s for s in self._retired_sessions if s.last_activity >= cutoff]
        expired = 0
        for session_id, session in list(self._sessions.items()):
            if session.last_activity < cutoff:
                if session.status == SessionStatus.ACTIVE:
                    expired += 1
                self._retire(self._sessions.pop(session_id), now)
        if expired:
            logger.info(f"Expired {expired} inactive sessions")
        return expired

    async def session_stats(self, account_id: str, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> Dict[str, Any]:
        sessions = [
            s for s in list(self._sessions.values()) + self._retired_sessions
            if s.account_id == account_id and _in_range(s.created_at, start, end)
        ]
        if not sessions:
            return dict(EMPTY_SESSION_STATS)
        return {
            "total_sessions": len(sessions),
            "total_messages": sum(s.summary.total_messages for s in sessions),
            "total_user_messages": sum(s.summary.user_messages for s in sessions),
            "total_assistant_messages": sum(s.summary.assistant_messages for s in sessions),
            "total_tokens": sum(s.summary.total_tokens for s in sessions),
            "total_cost": sum(s.summary.total_cost for s in sessions),
            "avg_messages_per_session": _average([s.summary.total_messages for s in sessions]),
            "avg_duration": _average([s.duration for s in sessions if s.duration is not None]),
            "avg_rating": _average([s.rating.score for s in sessions if s.rating is not None]),
        }

    # ----- message logs -----

    async def insert_message_log(self, log: MessageLog) -> MessageLog:
        stored = log.model_copy(deep=True)
        self._message_logs.append(stored)
        return stored.model_copy(deep=True)

    async def list_message_logs(self, account_id: str, limit: int = 50) -> List[MessageLog]:
        logs = [log for log in reversed(self._message_logs) if log.account_id == account_id]
        return [log.model_copy(deep=True) for log in logs[:limit]]

    async def count_message_logs(self, account_id: str, start: Optional[datetime] = None,
                                 end: Optional[datetime] = None) -> int:
        return sum(
            1 for log in self._message_logs
            if log.account_id == account_id and _in_range(log.timestamp, start, end)
        )

    # ----- subscriptions -----

    async def create_subscription_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        if record.external_subscription_id in self._subscriptions:
            raise AccountAlreadyExists(
                f"Subscription {record.external_subscription_id} already recorded",
                code="SUBSCRIPTION_EXISTS",
            )
        stored = record.model_copy(deep=True)
        self._subscriptions[stored.external_subscription_id] = stored
        return stored.model_copy(deep=True)

    async def find_subscription_by_external_id(self, external_id: str) -> Optional[SubscriptionRecord]:
        record = self._subscriptions.get(external_id)
        return record.model_copy(deep=True) if record else None

    async def update_subscription_record(self, external_id: str, fields: Dict[str, Any]) -> Optional[SubscriptionRecord]:
        current = self._subscriptions.get(external_id)
        if current is None:
            return None
        updated = _apply_fields(current, {**fields, "updated_at": self._clock()})
        self._subscriptions[external_id] = updated
        return updated.model_copy(deep=True)

    # ----- lifecycle -----

    def status(self) -> Dict[str, Any]:
        return {"type": self.name, "status": "connected", "connected": True, "degraded": self.degraded}

    async def close(self) -> None:
        return None
