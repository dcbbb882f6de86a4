import logging
import time
from typing import List, Optional

from app.core.config import settings
from app.core.exceptions import ProviderError, QuotaExceeded, SessionNotFound
from app.core.pricing import estimate_cost, monthly_message_limit
from app.models.account import Account
from app.models.chat_session import ChatSession, MessageRole, SessionContext, SessionRating
from app.models.message_log import MessageLog
from app.schemas.chat import ChatAskResponse
from app.services.openai_service import LLMProvider, OpenAIService, fallback_response
from app.services.quota_service import can_accept_message

logger = logging.getLogger("chat_service")


class ChatService:
    def __init__(self, llm: Optional[LLMProvider] = None, system_prompt: Optional[str] = None):
        self.llm = llm or OpenAIService()
        self.system_prompt = system_prompt or settings.system_prompt

    async def get_or_create_session(self, storage, session_id: str, account_id: str,
                                    context: Optional[SessionContext] = None) -> ChatSession:
        session = await storage.find_active_session(session_id, account_id)
        if session:
            return session
        return await storage.create_session(ChatSession.start(session_id, account_id, context))

    async def submit_turn(self, storage, account: Account, session_id: str, message: str,
                          context: Optional[SessionContext] = None) -> ChatAskResponse:
        """Run one visitor turn: quota gate, persist both sides, count usage, log.

        Provider failures are answered with a canned reply and do not consume quota.
        """
        if not can_accept_message(account):
            logger.info(f"Quota exceeded for account {account.id} on plan {account.plan.value}")
            raise QuotaExceeded(
                "Message limit exceeded for your plan",
                plan=account.plan.value,
                limit=monthly_message_limit(account.plan),
            )

        context = context or SessionContext()
        await self.get_or_create_session(storage, session_id, account.id, context)
        await storage.append_message(session_id, MessageRole.USER, message)

        started = time.monotonic()
        error_kind = None
        try:
            completion = await self.llm.generate(self.system_prompt, message)
        except ProviderError as e:
            error_kind = e.kind
            logger.error(f"LLM provider failed for session {session_id}: {e.kind}")
        response_time = int((time.monotonic() - started) * 1000)

        if error_kind:
            reply = fallback_response(error_kind)
            metadata = {"response_time": response_time, "error": error_kind}
        else:
            reply = completion.content
            metadata = {
                "response_time": response_time,
                "model": completion.model,
                "tokens": {
                    "prompt": completion.prompt_tokens,
                    "completion": completion.completion_tokens,
                    "total": completion.total_tokens,
                },
                "cost": estimate_cost(completion.model, completion.prompt_tokens, completion.completion_tokens),
            }
        assistant_message = await storage.append_message(session_id, MessageRole.ASSISTANT, reply, metadata)
        if not error_kind:
            await storage.increment_usage(account.id)

        # Best effort, the turn is already answered and counted
        try:
            await storage.insert_message_log(MessageLog(
                account_id=account.id,
                session_id=session_id,
                website=context.website.domain,
                user_message=message,
                ai_response=reply,
                response_time=response_time,
                timestamp=assistant_message.timestamp,
                user_agent=context.visitor.user_agent,
                ip_address=context.visitor.ip_address,
                country=context.visitor.country,
                city=context.visitor.city,
                error=error_kind,
            ))
        except Exception as e:
            logger.error(f"Failed to write message log for session {session_id}: {e}")

        return ChatAskResponse(response=reply, session_id=session_id, timestamp=assistant_message.timestamp)

    async def get_session_history(self, storage, session_id: str, account_id: str) -> ChatSession:
        session = await storage.find_session(session_id, account_id)
        if not session:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    async def end_session(self, storage, session_id: str, account_id: str) -> ChatSession:
        session = await storage.end_session(session_id, account_id)
        if not session:
            raise SessionNotFound(f"Session {session_id} not found or already closed")
        logger.info(f"Session {session_id} ended after {session.duration}s")
        return session

    async def rate_session(self, storage, session_id: str, account_id: str,
                           score: int, feedback: str = "") -> ChatSession:
        session = await storage.rate_session(session_id, account_id, SessionRating(score=score, feedback=feedback))
        if not session:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    async def list_logs(self, storage, account_id: str, limit: int = 50) -> List[MessageLog]:
        return await storage.list_message_logs(account_id, limit=limit)


chat_service = ChatService()
