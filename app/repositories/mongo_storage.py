import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import (
    AccountAlreadyExists,
    ConcurrentWriteConflict,
    SessionAlreadyRated,
    SessionNotFound,
)
from app.models.account import Account, normalize_email
from app.models.base import to_plain
from app.models.chat_session import ChatMessage, ChatSession, SessionRating, SessionStatus
from app.models.message_log import MessageLog
from app.models.subscription import SubscriptionRecord
from app.repositories.base import EMPTY_SESSION_STATS
from app.utils.time import advance, utcnow

logger = logging.getLogger("mongo_storage")


def _range_filter(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
    bounds = {}
    if start is not None:
        bounds["$gte"] = start
    if end is not None:
        bounds["$lte"] = end
    return bounds


class MongoStorage:
    """MongoDB backend.

    Session documents carry a ``version`` counter; every mutation is a
    compare-and-swap on it, so a message and its summary are written together.
    """

    name = "mongo"

    def __init__(self, client: AsyncIOMotorClient, db_name: str,
                 session_ttl: timedelta = timedelta(hours=24), max_append_retries: int = 3,
                 clock: Callable[[], datetime] = utcnow):
        self.client = client
        self.db = client[db_name]
        self.accounts = self.db["accounts"]
        self.sessions = self.db["chat_sessions"]
        self.message_logs = self.db["message_logs"]
        self.subscriptions = self.db["subscriptions"]
        self.session_ttl = session_ttl
        self.max_append_retries = max_append_retries
        self._clock = clock

    async def ping(self) -> None:
        await self.db.command("ping")

    async def ensure_indexes(self) -> None:
        await self.accounts.create_index("email", unique=True)
        await self.accounts.create_index(
            "api_key", unique=True, partialFilterExpression={"api_key": {"$type": "string"}}
        )
        await self.accounts.create_index("subscription.stripe_customer_id")
        await self.accounts.create_index([("created_at", DESCENDING)])

        await self.sessions.create_index(
            "session_id", unique=True, partialFilterExpression={"status": SessionStatus.ACTIVE.value}
        )
        await self.sessions.create_index([("session_id", ASCENDING), ("created_at", DESCENDING)])
        await self.sessions.create_index([("account_id", ASCENDING), ("created_at", DESCENDING)])
        await self.sessions.create_index([("website.domain", ASCENDING), ("created_at", DESCENDING)])
        await self.sessions.create_index([("status", ASCENDING), ("last_activity", ASCENDING)])
        await self.sessions.create_index(
            "last_activity", expireAfterSeconds=int(self.session_ttl.total_seconds())
        )

        await self.message_logs.create_index([("account_id", ASCENDING), ("timestamp", DESCENDING)])
        await self.message_logs.create_index([("website", ASCENDING), ("timestamp", DESCENDING)])

        await self.subscriptions.create_index("external_subscription_id", unique=True)
        await self.subscriptions.create_index("account_id")
        logger.info("MongoDB indexes ensured")

    # ----- accounts -----

    @staticmethod
    def _account(doc: Optional[Dict[str, Any]]) -> Optional[Account]:
        return Account.from_document(doc) if doc else None

    async def create_account(self, account: Account) -> Account:
        try:
            await self.accounts.insert_one(account.to_document())
        except DuplicateKeyError as e:
            logger.warning(f"Duplicate account rejected: {e.details.get('keyPattern') if e.details else e}")
            raise AccountAlreadyExists(f"Account with email {account.email} already exists")
        logger.info(f"Created account {account.id}")
        return account

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        return self._account(await self.accounts.find_one({"email": normalize_email(email)}))

    async def find_account_by_api_key(self, api_key: str) -> Optional[Account]:
        return self._account(await self.accounts.find_one({"api_key": api_key}))

    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        return self._account(await self.accounts.find_one({"_id": account_id}))

    async def find_account_by_customer_id(self, customer_id: str) -> Optional[Account]:
        return self._account(await self.accounts.find_one({"subscription.stripe_customer_id": customer_id}))

    async def update_account(self, account_id: str, fields: Dict[str, Any]) -> Optional[Account]:
        fields = to_plain(fields)
        unset = {path: "" for path, value in fields.items() if path == "api_key" and value is None}
        update: Dict[str, Any] = {}
        to_set = {path: value for path, value in fields.items() if path not in unset}
        if to_set:
            update["$set"] = to_set
        if unset:
            update["$unset"] = unset
        try:
            doc = await self.accounts.find_one_and_update(
                {"_id": account_id}, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise AccountAlreadyExists("Email or API key already in use")
        return self._account(doc)

    async def list_accounts(self, limit: int = 50, offset: int = 0) -> List[Account]:
        cursor = self.accounts.find({}).sort("created_at", DESCENDING).skip(offset).limit(limit)
        return [Account.from_document(doc) async for doc in cursor]

    async def increment_usage(self, account_id: str) -> Optional[Account]:
        doc = await self.accounts.find_one_and_update(
            {"_id": account_id},
            {"$inc": {"usage.messages_this_month": 1, "usage.total_messages": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return self._account(doc)

    async def reset_monthly_usage(self, account_id: str) -> Optional[Account]:
        doc = await self.accounts.find_one_and_update(
            {"_id": account_id},
            {"$set": {"usage.messages_this_month": 0, "usage.last_reset_date": self._clock()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._account(doc)

    # ----- chat sessions -----

    def _active_filter(self, session_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        cutoff = (now or self._clock()) - self.session_ttl
        return {
            "session_id": session_id,
            "status": SessionStatus.ACTIVE.value,
            "last_activity": {"$gte": cutoff},
        }

    async def _compare_and_swap(self, load_filter: Callable[[], Dict[str, Any]],
                                mutate: Callable[[ChatSession], tuple]):
        """Load the newest matching session, apply ``mutate`` and write it back
        only if nobody else bumped the version in between.

        ``mutate`` returns ``(update_document, result)``. Returns None when no
        session matches.
        """
        for attempt in range(self.max_append_retries + 1):
            doc = await self.sessions.find_one(load_filter(), sort=[("created_at", DESCENDING)])
            if doc is None:
                return None
            session = ChatSession.from_document(doc)
            expected_version = session.version
            update, result = mutate(session)
            update["$inc"] = {"version": 1}
            outcome = await self.sessions.update_one({"_id": doc["_id"], "version": expected_version}, update)
            if outcome.modified_count == 1:
                return result
            logger.warning(f"Version conflict on session {session.session_id}, attempt {attempt + 1}")
        raise ConcurrentWriteConflict("Too many concurrent writes to session")

    async def create_session(self, session: ChatSession) -> ChatSession:
        now = self._clock()
        latest = await self.sessions.find_one({"session_id": session.session_id}, sort=[("created_at", DESCENDING)])
        if latest is not None and latest.get("account_id") != session.account_id:
            logger.warning(f"Session {session.session_id} requested by non-owner account {session.account_id}")
            raise SessionNotFound(f"Session {session.session_id} not found")

        active = await self.find_active_session(session.session_id, session.account_id)
        if active is not None:
            return active

        stale = await self.sessions.update_many(
            {
                "session_id": session.session_id,
                "status": SessionStatus.ACTIVE.value,
                "last_activity": {"$lt": now - self.session_ttl},
            },
            {"$set": {"status": SessionStatus.TIMEOUT.value, "updated_at": now}},
        )
        if stale.modified_count:
            logger.info(f"Timed out stale session {session.session_id}")

        session = session.model_copy(deep=True)
        session.stamp_created(now)
        try:
            await self.sessions.insert_one(session.to_document())
        except DuplicateKeyError:
            # lost a creation race; the winner's record is the session
            winner = await self.find_active_session(session.session_id)
            if winner is None:
                raise ConcurrentWriteConflict(f"Session {session.session_id} is being created concurrently")
            if winner.account_id != session.account_id:
                raise SessionNotFound(f"Session {session.session_id} not found")
            return winner
        logger.info(f"Created session {session.session_id} for account {session.account_id}")
        return session

    async def find_active_session(self, session_id: str, account_id: Optional[str] = None) -> Optional[ChatSession]:
        query = self._active_filter(session_id)
        if account_id is not None:
            query["account_id"] = account_id
        doc = await self.sessions.find_one(query)
        return ChatSession.from_document(doc) if doc else None

    async def find_session(self, session_id: str, account_id: str) -> Optional[ChatSession]:
        doc = await self.sessions.find_one(
            {"session_id": session_id, "account_id": account_id}, sort=[("created_at", DESCENDING)]
        )
        return ChatSession.from_document(doc) if doc else None

    async def append_message(self, session_id: str, role: str, content: str,
                             metadata: Optional[Dict[str, Any]] = None) -> ChatMessage:
        def mutate(session: ChatSession):
            message = session.add_message(role, content, metadata, now=self._clock())
            update = {
                "$push": {"messages": to_plain(message)},
                "$set": {
                    "summary": to_plain(session.summary),
                    "last_activity": session.last_activity,
                    "updated_at": session.updated_at,
                },
            }
            return update, message

        message = await self._compare_and_swap(lambda: self._active_filter(session_id), mutate)
        if message is None:
            raise SessionNotFound(f"Session {session_id} not found or expired")
        return message

    async def end_session(self, session_id: str, account_id: str) -> Optional[ChatSession]:
        def load():
            return {**self._active_filter(session_id), "account_id": account_id}

        def mutate(session: ChatSession):
            session.end(self._clock())
            update = {
                "$set": {
                    "status": session.status.value,
                    "end_time": session.end_time,
                    "duration": session.duration,
                    "last_activity": session.last_activity,
                    "updated_at": session.updated_at,
                },
            }
            return update, session

        return await self._compare_and_swap(load, mutate)

    async def rate_session(self, session_id: str, account_id: str, rating: SessionRating) -> Optional[ChatSession]:
        def mutate(session: ChatSession):
            if session.rating is not None:
                raise SessionAlreadyRated(f"Session {session_id} has already been rated")
            session.rating = rating
            session.updated_at = advance(session.updated_at, self._clock())
            return {"$set": {"rating": to_plain(rating), "updated_at": session.updated_at}}, session

        return await self._compare_and_swap(
            lambda: {"session_id": session_id, "account_id": account_id}, mutate
        )

    async def expire_sessions(self) -> int:
        now = self._clock()
        result = await self.sessions.update_many(
            {"status": SessionStatus.ACTIVE.value, "last_activity": {"$lt": now - self.session_ttl}},
            {"$set": {"status": SessionStatus.TIMEOUT.value, "updated_at": now}},
        )
        if result.modified_count:
            logger.info(f"Expired {result.modified_count} inactive sessions")
        return result.modified_count

    async def session_stats(self, account_id: str, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> Dict[str, Any]:
        match: Dict[str, Any] = {"account_id": account_id}
        created = _range_filter(start, end)
        if created:
            match["created_at"] = created
        pipeline = [
            {"$match": match},
            {"$group": {
                "_id": None,
                "total_sessions": {"$sum": 1},
                "total_messages": {"$sum": "$summary.total_messages"},
                "total_user_messages": {"$sum": "$summary.user_messages"},
                "total_assistant_messages": {"$sum": "$summary.assistant_messages"},
                "total_tokens": {"$sum": "$summary.total_tokens"},
                "total_cost": {"$sum": "$summary.total_cost"},
                "avg_messages_per_session": {"$avg": "$summary.total_messages"},
                "avg_duration": {"$avg": "$duration"},
                "avg_rating": {"$avg": "$rating.score"},
            }},
        ]
        rows = await self.sessions.aggregate(pipeline).to_list(length=1)
        if not rows:
            return dict(EMPTY_SESSION_STATS)
        stats = dict(rows[0])
        stats.pop("_id", None)
        return stats

    # ----- message logs -----

    async def insert_message_log(self, log: MessageLog) -> MessageLog:
        await self.message_logs.insert_one(log.to_document())
        return log

    async def list_message_logs(self, account_id: str, limit: int = 50) -> List[MessageLog]:
        cursor = self.message_logs.find({"account_id": account_id}).sort("timestamp", DESCENDING).limit(limit)
        return [MessageLog.from_document(doc) async for doc in cursor]

    async def count_message_logs(self, account_id: str, start: Optional[datetime] = None,
                                 end: Optional[datetime] = None) -> int:
        query: Dict[str, Any] = {"account_id": account_id}
        bounds = _range_filter(start, end)
        if bounds:
            query["timestamp"] = bounds
        return await self.message_logs.count_documents(query)

    # ----- subscriptions -----

    async def create_subscription_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        try:
            await self.subscriptions.insert_one(record.to_document())
        except DuplicateKeyError:
            raise AccountAlreadyExists(
                f"Subscription {record.external_subscription_id} already recorded",
                code="SUBSCRIPTION_EXISTS",
            )
        return record

    async def find_subscription_by_external_id(self, external_id: str) -> Optional[SubscriptionRecord]:
        doc = await self.subscriptions.find_one({"external_subscription_id": external_id})
        return SubscriptionRecord.from_document(doc) if doc else None

    async def update_subscription_record(self, external_id: str, fields: Dict[str, Any]) -> Optional[SubscriptionRecord]:
        doc = await self.subscriptions.find_one_and_update(
            {"external_subscription_id": external_id},
            {"$set": {**to_plain(fields), "updated_at": self._clock()}},
            return_document=ReturnDocument.AFTER,
        )
        return SubscriptionRecord.from_document(doc) if doc else None

    # ----- lifecycle -----

    def status(self) -> Dict[str, Any]:
        return {"type": self.name, "status": "connected", "connected": True, "degraded": False}

    async def close(self) -> None:
        self.client.close()
        logger.info("MongoDB connection closed")
