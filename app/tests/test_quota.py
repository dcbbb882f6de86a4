import pytest

from app.core.pricing import estimate_cost, monthly_message_limit, plan_catalogue
from app.models.account import Account, AccountSubscription, AccountUsage, PlanType
from app.services.quota_service import can_accept_message, remaining_messages


def _account(plan, used):
    return Account(
        name="Quota",
        email="quota@example.com",
        password_hash="x",
        subscription=AccountSubscription(plan=plan),
        usage=AccountUsage(messages_this_month=used),
    )


class TestQuotaGate:
    @pytest.mark.parametrize("plan,limit", [
        (PlanType.FREE, 100),
        (PlanType.STARTER, 1000),
        (PlanType.PROFESSIONAL, 5000),
    ])
    def test_boundary(self, plan, limit):
        assert can_accept_message(_account(plan, limit - 1)) is True
        assert can_accept_message(_account(plan, limit)) is False

    def test_enterprise_is_unbounded(self):
        account = _account(PlanType.ENTERPRISE, 10_000_000)
        assert can_accept_message(account) is True
        assert remaining_messages(account) is None

    def test_remaining_never_negative(self):
        assert remaining_messages(_account(PlanType.FREE, 40)) == 60
        assert remaining_messages(_account(PlanType.FREE, 150)) == 0

    def test_gate_has_no_side_effects(self):
        account = _account(PlanType.FREE, 99)
        can_accept_message(account)
        assert account.usage.messages_this_month == 99


class TestPlans:
    def test_legacy_plan_aliases(self):
        assert PlanType("basic") is PlanType.STARTER
        assert PlanType("pro") is PlanType.PROFESSIONAL
        with pytest.raises(ValueError):
            PlanType("gold")

    def test_limit_table(self):
        assert monthly_message_limit(PlanType.FREE) == 100
        assert monthly_message_limit("enterprise") is None

    def test_catalogue_lists_every_plan(self):
        ids = [plan["id"] for plan in plan_catalogue()]
        assert ids == ["free", "starter", "professional", "enterprise"]

    def test_cost_estimate(self):
        assert estimate_cost("gpt-4o-mini", 1000, 1000) == pytest.approx(0.00075)
        assert estimate_cost("some-other-model", 50, 50) == pytest.approx(0.001)
