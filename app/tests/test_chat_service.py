"""End-to-end chat turns through ChatService on the in-memory backend."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.config import Settings
from app.core.exceptions import (
    ProviderError,
    QuotaExceeded,
    SessionAlreadyRated,
    SessionNotFound,
    StorageUnavailable,
)
from app.models.account import PlanType
from app.models.chat_session import MessageRole, SessionContext, SessionStatus, WebsiteContext
from app.services.chat_service import ChatService
from app.services.openai_service import EMPTY_COMPLETION_REPLY, OpenAIService, classify_error, fallback_response


class TestSubmitTurn:
    async def test_first_turn_for_new_account(self, storage, chat, fake_llm, make_account):
        account = await make_account(plan=PlanType.FREE)
        context = SessionContext(website=WebsiteContext(domain="shop.example.com"))

        result = await chat.submit_turn(storage, account, "visitor-1", "Do you ship abroad?", context)

        assert result.response == fake_llm.reply
        assert result.session_id == "visitor-1"
        session = await storage.find_active_session("visitor-1", account.id)
        assert [m.role for m in session.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert session.website.domain == "shop.example.com"
        assert session.summary.user_messages == 1
        assert session.summary.assistant_messages == 1
        assert session.summary.total_tokens == 30
        reply = session.messages[-1]
        assert reply.metadata.model == "gpt-4o-mini"
        assert reply.metadata.tokens.total == 30
        assert reply.metadata.cost > 0
        assert reply.metadata.error is None
        assert result.timestamp == reply.timestamp

        stored = await storage.find_account_by_id(account.id)
        assert stored.usage.messages_this_month == 1
        assert stored.usage.total_messages == 1
        logs = await storage.list_message_logs(account.id)
        assert len(logs) == 1
        assert logs[0].website == "shop.example.com"
        assert logs[0].user_message == "Do you ship abroad?"
        assert logs[0].ai_response == fake_llm.reply

    async def test_quota_exhausted_rejects_without_side_effects(self, storage, chat, fake_llm, make_account):
        account = await make_account(plan=PlanType.FREE, messages_this_month=100)

        with pytest.raises(QuotaExceeded) as excinfo:
            await chat.submit_turn(storage, account, "visitor-1", "hello")

        assert excinfo.value.plan == "free"
        assert excinfo.value.limit == 100
        assert fake_llm.calls == []
        assert await storage.find_active_session("visitor-1") is None
        assert await storage.count_message_logs(account.id) == 0
        assert (await storage.find_account_by_id(account.id)).usage.messages_this_month == 100

    async def test_last_message_under_limit_is_accepted(self, storage, chat, make_account):
        account = await make_account(plan=PlanType.FREE, messages_this_month=99)
        await chat.submit_turn(storage, account, "visitor-1", "hello")
        assert (await storage.find_account_by_id(account.id)).usage.messages_this_month == 100

    async def test_provider_timeout_replies_with_apology_and_keeps_quota(self, storage, make_account, llm_factory):
        chat = ChatService(llm=llm_factory(error_kind=ProviderError.TIMEOUT), system_prompt="test")
        account = await make_account()

        result = await chat.submit_turn(storage, account, "visitor-1", "hello")

        assert result.response == fallback_response(ProviderError.TIMEOUT)
        session = await storage.find_active_session("visitor-1")
        assert len(session.messages) == 2
        assert session.messages[-1].role == MessageRole.ASSISTANT
        assert session.messages[-1].metadata.error == "timeout"
        assert session.summary.total_tokens == 0
        assert (await storage.find_account_by_id(account.id)).usage.messages_this_month == 0
        logs = await storage.list_message_logs(account.id)
        assert logs[0].error == "timeout"

    async def test_failed_log_write_still_counts_usage(self, storage, chat, fake_llm, make_account, monkeypatch):
        account = await make_account()
        monkeypatch.setattr(storage, "insert_message_log", AsyncMock(side_effect=StorageUnavailable("log store down")))

        result = await chat.submit_turn(storage, account, "visitor-1", "hello")

        assert result.response == fake_llm.reply
        session = await storage.find_active_session("visitor-1")
        assert len(session.messages) == 2
        assert (await storage.find_account_by_id(account.id)).usage.messages_this_month == 1
        storage.insert_message_log.assert_awaited_once()

    async def test_concurrent_appends_to_one_session(self, storage, chat, make_account):
        account = await make_account()
        await chat.get_or_create_session(storage, "visitor-1", account.id)
        await asyncio.gather(
            storage.append_message("visitor-1", "user", "first"),
            storage.append_message("visitor-1", "user", "second"),
        )
        session = await storage.find_active_session("visitor-1")
        assert sorted(m.content for m in session.messages) == ["first", "second"]
        assert session.summary.total_messages == 2

    async def test_concurrent_turns_to_one_session(self, storage, make_account, llm_factory):
        chat = ChatService(llm=llm_factory(delay=0.01), system_prompt="test")
        account = await make_account()
        await asyncio.gather(
            chat.submit_turn(storage, account, "visitor-1", "question one"),
            chat.submit_turn(storage, account, "visitor-1", "question two"),
        )
        session = await storage.find_active_session("visitor-1")
        assert len(session.messages) == 4
        assert session.summary.user_messages == 2
        assert session.summary.assistant_messages == 2
        assert (await storage.find_account_by_id(account.id)).usage.messages_this_month == 2

    async def test_session_of_other_account_is_not_found(self, storage, chat, make_account):
        owner = await make_account()
        intruder = await make_account()
        await chat.submit_turn(storage, owner, "visitor-1", "hello")
        with pytest.raises(SessionNotFound):
            await chat.submit_turn(storage, intruder, "visitor-1", "hello")
        assert (await storage.find_account_by_id(intruder.id)).usage.messages_this_month == 0


class TestSessionOperations:
    async def test_history_is_scoped_to_owner(self, storage, chat, make_account):
        owner = await make_account()
        other = await make_account()
        await chat.submit_turn(storage, owner, "visitor-1", "hello")
        history = await chat.get_session_history(storage, "visitor-1", owner.id)
        assert len(history.messages) == 2
        with pytest.raises(SessionNotFound):
            await chat.get_session_history(storage, "visitor-1", other.id)

    async def test_end_then_new_turn_starts_new_session(self, storage, chat, make_account, clock):
        account = await make_account()
        await chat.submit_turn(storage, account, "visitor-1", "hello")
        clock.advance(seconds=30)
        ended = await chat.end_session(storage, "visitor-1", account.id)
        assert ended.status == SessionStatus.ENDED
        assert ended.duration == 30
        with pytest.raises(SessionNotFound):
            await chat.end_session(storage, "visitor-1", account.id)
        await chat.submit_turn(storage, account, "visitor-1", "back again")
        session = await storage.find_active_session("visitor-1")
        assert len(session.messages) == 2

    async def test_rating(self, storage, chat, make_account):
        account = await make_account()
        await chat.submit_turn(storage, account, "visitor-1", "hello")
        rated = await chat.rate_session(storage, "visitor-1", account.id, 5, "great")
        assert rated.rating.score == 5
        with pytest.raises(SessionAlreadyRated):
            await chat.rate_session(storage, "visitor-1", account.id, 3)


def _completion(content, prompt=5, completion=7):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion),
    )


class TestOpenAIService:
    def _service(self, timeout=30):
        service = OpenAIService(Settings(openai_api_key="sk-test", llm_timeout_seconds=timeout))
        service.client = MagicMock()
        return service

    async def test_completion_is_mapped(self):
        service = self._service()
        service.client.chat.completions.create = AsyncMock(return_value=_completion("  Sure thing.  "))
        result = await service.generate("system", "hi")
        assert result.content == "Sure thing."
        assert result.total_tokens == 12
        assert result.model == service.model
        kwargs = service.client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "system", "content": "system"}, {"role": "user", "content": "hi"}]

    async def test_empty_completion_gets_placeholder(self):
        service = self._service()
        service.client.chat.completions.create = AsyncMock(return_value=_completion(None))
        assert (await service.generate("system", "hi")).content == EMPTY_COMPLETION_REPLY

    async def test_slow_provider_times_out(self):
        service = self._service(timeout=0.01)

        async def slow(**kwargs):
            await asyncio.sleep(1)

        service.client.chat.completions.create = slow
        with pytest.raises(ProviderError) as excinfo:
            await service.generate("system", "hi")
        assert excinfo.value.kind == ProviderError.TIMEOUT

    async def test_unexpected_error_is_unknown(self):
        service = self._service()
        service.client.chat.completions.create = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(ProviderError) as excinfo:
            await service.generate("system", "hi")
        assert excinfo.value.kind == ProviderError.UNKNOWN
        assert excinfo.value.code == "PROVIDER_UNKNOWN"

    async def test_missing_api_key_is_auth_error(self):
        service = OpenAIService(Settings(openai_api_key=None))
        with pytest.raises(ProviderError) as excinfo:
            await service.generate("system", "hi")
        assert excinfo.value.kind == ProviderError.AUTH

    def test_classify_timeout(self):
        assert classify_error(asyncio.TimeoutError()) == ProviderError.TIMEOUT
