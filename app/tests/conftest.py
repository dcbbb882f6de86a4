"""Shared fixtures: controllable clock, in-memory storage, fake LLM and payment gateway."""

import asyncio
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings, settings
from app.core.exceptions import ProviderError
from app.models.account import Account, AccountSubscription, AccountUsage, PlanType, generate_api_key
from app.repositories.memory_storage import InMemoryStorage
from app.services.account_service import AccountService
from app.services.auth_service import CredentialService
from app.services.chat_service import ChatService
from app.services.openai_service import LLMCompletion
from app.services.subscription_service import SubscriptionService
from app.utils.time import utcnow


class FakeClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeLLM:
    def __init__(self, reply="Hello! How can I help you today?", error_kind=None, delay=0.0):
        self.reply = reply
        self.error_kind = error_kind
        self.delay = delay
        self.calls = []

    async def generate(self, system_prompt, user_message, model=None):
        self.calls.append(user_message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error_kind:
            raise ProviderError(self.error_kind)
        return LLMCompletion(
            content=self.reply,
            model=model or "gpt-4o-mini",
            prompt_tokens=10,
            completion_tokens=20,
            total_tokens=30,
        )


class FakeGateway:
    def __init__(self):
        self.calls = []

    async def cancel_at_period_end(self, subscription_id):
        self.calls.append(("cancel", subscription_id))
        return {"id": subscription_id, "status": "active", "cancel_at_period_end": True, "current_period_end": None}

    async def reactivate(self, subscription_id):
        self.calls.append(("reactivate", subscription_id))
        return {"id": subscription_id, "status": "active", "cancel_at_period_end": False, "current_period_end": None}

    def parse_event(self, payload, signature):
        return json.loads(payload)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(clock):
    return InMemoryStorage(session_ttl=timedelta(hours=24), message_log_cap=1000, clock=clock)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def llm_factory():
    return FakeLLM


@pytest.fixture
def chat(fake_llm):
    return ChatService(llm=fake_llm, system_prompt="You are a test assistant.")


@pytest.fixture
def credentials():
    return CredentialService(Settings(bcrypt_rounds=4, secret_key="test-secret"))


@pytest.fixture
def accounts(credentials):
    return AccountService(credentials=credentials)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def subscriptions(fake_gateway):
    return SubscriptionService(gateway=fake_gateway)


@pytest.fixture
def make_account(storage):
    """Factory storing an account with a given plan and monthly usage."""
    counter = {"n": 0}

    async def _make(plan=PlanType.FREE, messages_this_month=0, **kwargs):
        counter["n"] += 1
        account = Account(
            name=kwargs.pop("name", f"Tenant {counter['n']}"),
            email=kwargs.pop("email", f"tenant{counter['n']}@example.com"),
            password_hash=kwargs.pop("password_hash", "not-a-real-hash"),
            api_key=kwargs.pop("api_key", generate_api_key()),
            subscription=AccountSubscription(plan=plan, **kwargs.pop("subscription", {})),
            usage=AccountUsage(messages_this_month=messages_this_month, total_messages=messages_this_month),
            **kwargs,
        )
        return await storage.create_account(account)

    return _make


@pytest.fixture
def client(storage, chat, subscriptions, monkeypatch):
    from app.core.dependencies import get_chat_service, get_subscription_service
    from app.main import create_app
    from app.services.account_service import account_service

    monkeypatch.setattr(settings, "admin_api_key", "admin-secret")
    monkeypatch.setattr(settings, "session_sweep_interval_seconds", 0)
    monkeypatch.setattr(account_service.credentials, "rounds", 4)

    app = create_app()
    app.state.storage = storage
    app.dependency_overrides[get_chat_service] = lambda: chat
    app.dependency_overrides[get_subscription_service] = lambda: subscriptions
    with TestClient(app) as test_client:
        yield test_client
