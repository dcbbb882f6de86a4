import pytest

from app.core.exceptions import AccountAlreadyExists, AccountNotFound, AuthenticationError
from app.models.account import PlanType, SubscriptionStatus
from app.schemas.account import SignupRequest, WidgetConfigUpdate


def _signup(email="owner@example.com", password="s3cret-pass"):
    return SignupRequest(name="Owner", email=email, password=password, company="Acme")


class TestSignupAndLogin:
    async def test_signup_issues_api_key_and_token(self, storage, accounts, credentials):
        result = await accounts.signup(storage, _signup())
        assert result.account.api_key.startswith("cb_")
        assert len(result.account.api_key) == 3 + 64
        assert result.account.subscription.plan == PlanType.FREE
        assert credentials.validate_token(result.access_token) == result.account.id
        stored = await storage.find_account_by_email("owner@example.com")
        assert stored.password_hash != "s3cret-pass"

    async def test_duplicate_email(self, storage, accounts):
        await accounts.signup(storage, _signup())
        with pytest.raises(AccountAlreadyExists):
            await accounts.signup(storage, _signup(email="OWNER@example.com"))

    async def test_login(self, storage, accounts):
        await accounts.signup(storage, _signup())
        result = await accounts.login(storage, "owner@example.com", "s3cret-pass")
        assert result.account.email == "owner@example.com"
        with pytest.raises(AuthenticationError):
            await accounts.login(storage, "owner@example.com", "wrong")
        with pytest.raises(AuthenticationError):
            await accounts.login(storage, "nobody@example.com", "s3cret-pass")


class TestCredentials:
    async def test_authenticate_by_api_key_or_token(self, storage, accounts):
        signup = await accounts.signup(storage, _signup())
        by_key = await accounts.authenticate(storage, api_key=signup.account.api_key)
        by_token = await accounts.authenticate(storage, token=signup.access_token)
        assert by_key.id == by_token.id == signup.account.id

    async def test_invalid_credentials(self, storage, accounts):
        with pytest.raises(AuthenticationError):
            await accounts.authenticate(storage, api_key="cb_unknown")
        with pytest.raises(AuthenticationError):
            await accounts.authenticate(storage, token="not-a-jwt")
        with pytest.raises(AuthenticationError):
            await accounts.authenticate(storage)

    async def test_regenerated_key_replaces_old_one(self, storage, accounts):
        signup = await accounts.signup(storage, _signup())
        new_key = await accounts.regenerate_api_key(storage, signup.account.id)
        assert new_key != signup.account.api_key
        with pytest.raises(AuthenticationError):
            await accounts.authenticate(storage, api_key=signup.account.api_key)
        assert (await accounts.authenticate(storage, api_key=new_key)).id == signup.account.id

    def test_password_hash_round_trip(self, credentials):
        hashed = credentials.hash_password("correct horse")
        assert credentials.verify_password("correct horse", hashed)
        assert not credentials.verify_password("wrong horse", hashed)
        assert not credentials.verify_password("anything", "not-a-bcrypt-hash")


class TestWidgetConfig:
    async def test_partial_update(self, storage, accounts, make_account):
        account = await make_account()
        config = await accounts.update_widget_config(
            storage, account.id, WidgetConfigUpdate(primary_color="#112233", title="Support")
        )
        assert config.primary_color == "#112233"
        assert config.title == "Support"
        assert config.placeholder == "Type your message..."

    async def test_public_config_falls_back_to_defaults(self, storage, accounts, make_account):
        account = await make_account()
        await accounts.update_widget_config(storage, account.id, WidgetConfigUpdate(title="Helpdesk"))
        assert (await accounts.public_widget_config(storage, account.api_key))["title"] == "Helpdesk"
        assert (await accounts.public_widget_config(storage, "cb_unknown"))["title"] == "AI Assistant"


class TestAdministration:
    async def test_usage_and_limits(self, storage, accounts, make_account):
        account = await make_account(plan=PlanType.STARTER, messages_this_month=250)
        usage = await accounts.get_usage_and_limits(storage, account.id)
        assert usage.limit == 1000
        assert usage.remaining == 750

    async def test_change_plan_and_reset(self, storage, accounts, make_account):
        account = await make_account(messages_this_month=100)
        upgraded = await accounts.change_plan(storage, account.id, PlanType("pro"))
        assert upgraded.plan == PlanType.PROFESSIONAL
        reset = await accounts.reset_usage(storage, account.id)
        assert reset.usage.messages_this_month == 0
        with pytest.raises(AccountNotFound):
            await accounts.reset_usage(storage, "missing")

    async def test_stats(self, storage, accounts, make_account):
        await make_account()
        await make_account(plan=PlanType.ENTERPRISE)
        await make_account(plan=PlanType.STARTER, subscription={"status": SubscriptionStatus.PAST_DUE})
        stats = await accounts.admin_stats(storage)
        assert stats["total_accounts"] == 3
        assert stats["active_subscriptions"] == 2
        assert stats["plan_distribution"] == {"free": 1, "starter": 1, "professional": 0, "enterprise": 1}

    async def test_listing_has_no_credentials(self, storage, accounts, make_account):
        await make_account()
        listed = await accounts.list_accounts(storage)
        dumped = listed[0].model_dump()
        assert "api_key" not in dumped
        assert "password_hash" not in dumped
