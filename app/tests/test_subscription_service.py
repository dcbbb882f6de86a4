"""Payment webhooks and cancel/reactivate through a fake gateway."""

import pytest

from app.core.exceptions import ValidationError
from app.models.account import PlanType, SubscriptionStatus

PERIOD_START = 1735689600  # 2025-01-01
PERIOD_END = 1738368000  # 2025-02-01


def _subscription_event(event_type, account_id=None, status="active", plan="starter", customer="cus_123", **extra):
    metadata = {"plan": plan}
    if account_id:
        metadata["account_id"] = account_id
    obj = {
        "id": "sub_123",
        "customer": customer,
        "status": status,
        "metadata": metadata,
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "cancel_at_period_end": False,
        "items": {"data": [{"price": {"id": "price_starter", "unit_amount": 29900, "currency": "inr",
                                      "recurring": {"interval": "month"}}}]},
        **extra,
    }
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


class TestWebhooks:
    async def test_subscription_created_sets_plan_and_records_it(self, storage, subscriptions, make_account):
        account = await make_account()
        result = await subscriptions.handle_event(
            storage, _subscription_event("customer.subscription.created", account_id=account.id)
        )
        assert result == {"received": True, "event_type": "customer.subscription.created", "handled": True}

        updated = await storage.find_account_by_id(account.id)
        assert updated.plan == PlanType.STARTER
        assert updated.subscription.status == SubscriptionStatus.ACTIVE
        assert updated.subscription.stripe_customer_id == "cus_123"
        assert updated.subscription.stripe_subscription_id == "sub_123"
        assert updated.subscription.current_period_end.year == 2025
        record = await storage.find_subscription_by_external_id("sub_123")
        assert record.account_id == account.id
        assert record.price_id == "price_starter"
        assert record.amount == 29900

    async def test_unprefixed_event_names_are_accepted(self, storage, subscriptions, make_account):
        account = await make_account()
        result = await subscriptions.handle_event(
            storage, _subscription_event("subscription.updated", account_id=account.id, plan="professional")
        )
        assert result["handled"] is True
        assert (await storage.find_account_by_id(account.id)).plan == PlanType.PROFESSIONAL

    async def test_processor_canceled_downgrades_to_free(self, storage, subscriptions, make_account):
        account = await make_account(plan=PlanType.PROFESSIONAL, subscription={"stripe_customer_id": "cus_123"})
        await subscriptions.handle_event(storage, _subscription_event("customer.subscription.created"))
        await subscriptions.handle_event(storage, _subscription_event("customer.subscription.updated", status="canceled"))
        updated = await storage.find_account_by_id(account.id)
        assert updated.plan == PlanType.FREE
        assert updated.subscription.status == SubscriptionStatus.CANCELLED
        assert (await storage.find_subscription_by_external_id("sub_123")).status == "cancelled"

    async def test_deleted_subscription_is_cancelled(self, storage, subscriptions, make_account):
        account = await make_account(plan=PlanType.STARTER)
        await subscriptions.handle_event(
            storage, _subscription_event("customer.subscription.deleted", account_id=account.id)
        )
        updated = await storage.find_account_by_id(account.id)
        assert updated.plan == PlanType.FREE
        assert updated.subscription.status == SubscriptionStatus.CANCELLED

    async def test_payment_failed_marks_past_due(self, storage, subscriptions, make_account):
        account = await make_account(plan=PlanType.STARTER, subscription={"stripe_customer_id": "cus_999"})
        event = {"type": "invoice.payment_failed", "data": {"object": {"customer": "cus_999", "subscription": "sub_x"}}}
        assert (await subscriptions.handle_event(storage, event))["handled"] is True
        updated = await storage.find_account_by_id(account.id)
        assert updated.subscription.status == SubscriptionStatus.PAST_DUE
        assert updated.plan == PlanType.STARTER

    async def test_webhooks_only_touch_subscription_fields(self, storage, subscriptions, make_account):
        account = await make_account(messages_this_month=42)
        await subscriptions.handle_event(
            storage, _subscription_event("customer.subscription.updated", account_id=account.id)
        )
        updated = await storage.find_account_by_id(account.id)
        assert updated.usage.messages_this_month == 42
        assert updated.api_key == account.api_key
        assert updated.widget_config == account.widget_config

    async def test_unknown_event_and_unknown_account(self, storage, subscriptions):
        assert (await subscriptions.handle_event(storage, {"type": "charge.refunded"}))["handled"] is False
        event = _subscription_event("customer.subscription.updated", customer="cus_nobody")
        assert (await subscriptions.handle_event(storage, event))["handled"] is False


class TestCancelReactivate:
    async def test_cancel_without_subscription(self, storage, subscriptions, make_account):
        account = await make_account()
        with pytest.raises(ValidationError):
            await subscriptions.cancel(storage, account)

    async def test_cancel_and_reactivate(self, storage, subscriptions, fake_gateway, make_account):
        account = await make_account(plan=PlanType.STARTER, subscription={"stripe_subscription_id": "sub_123"})
        details = await subscriptions.cancel(storage, account)
        assert details.cancel_at_period_end is True
        assert (await storage.find_account_by_id(account.id)).subscription.cancel_at_period_end is True

        details = await subscriptions.reactivate(storage, account)
        assert details.cancel_at_period_end is False
        assert fake_gateway.calls == [("cancel", "sub_123"), ("reactivate", "sub_123")]

    def test_plan_catalogue(self, subscriptions):
        plans = subscriptions.plans()
        assert plans.currency == "INR"
        assert [p.price for p in plans.plans] == [0, 299, 999, 2999]
