import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from app.core.exceptions import (
    AccountAlreadyExists,
    AccountNotFound,
    AuthenticationError,
)
from app.core.pricing import monthly_message_limit
from app.models.account import (
    Account,
    PlanType,
    SubscriptionStatus,
    WidgetConfig,
    generate_api_key,
)
from app.schemas.account import (
    AccountResponse,
    AdminAccountResponse,
    AuthResponse,
    SignupRequest,
    UsageResponse,
    WidgetConfigUpdate,
)
from app.services.auth_service import CredentialService, credential_service
from app.services.quota_service import remaining_messages
from app.utils.time import utcnow

logger = logging.getLogger("account_service")

ADMIN_PAGE_SIZE = 100


class AccountService:
    def __init__(self, credentials: CredentialService = credential_service):
        self.credentials = credentials

    async def signup(self, storage, data: SignupRequest) -> AuthResponse:
        if await storage.find_account_by_email(data.email):
            raise AccountAlreadyExists("User already exists with this email")
        account = Account(
            name=data.name,
            email=data.email,
            password_hash=self.credentials.hash_password(data.password),
            api_key=generate_api_key(),
            phone=data.phone,
            company=data.company,
            website=data.website,
        )
        account = await storage.create_account(account)
        logger.info(f"New account signed up: {account.id}")
        return self._auth_response(account)

    async def login(self, storage, email: str, password: str) -> AuthResponse:
        account = await storage.find_account_by_email(email)
        if not account or not self.credentials.verify_password(password, account.password_hash):
            logger.info("Failed login attempt")
            raise AuthenticationError("Invalid credentials", code="INVALID_CREDENTIALS")
        account = await storage.update_account(account.id, {"last_login_at": utcnow()}) or account
        return self._auth_response(account)

    def _auth_response(self, account: Account) -> AuthResponse:
        token = self.credentials.issue_token(account.id, account.email)
        return AuthResponse(access_token=token, account=AccountResponse.model_validate(account))

    async def get_account(self, storage, account_id: str) -> Account:
        account = await storage.find_account_by_id(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    async def authenticate(self, storage, api_key: Optional[str] = None, token: Optional[str] = None) -> Account:
        """Resolve a widget API key or a dashboard bearer token to its account."""
        if api_key:
            account = await storage.find_account_by_api_key(api_key)
            if not account:
                raise AuthenticationError("Invalid API key", code="INVALID_API_KEY")
            return account
        if token:
            account_id = self.credentials.validate_token(token)
            account = await storage.find_account_by_id(account_id)
            if not account:
                raise AuthenticationError("Account no longer exists", code="INVALID_TOKEN")
            return account
        raise AuthenticationError("API key or access token required", code="CREDENTIAL_REQUIRED")

    async def update_widget_config(self, storage, account_id: str, update: WidgetConfigUpdate) -> WidgetConfig:
        fields = {
            f"widget_config.{name}": value
            for name, value in update.model_dump(exclude_none=True).items()
        }
        if not fields:
            return (await self.get_account(storage, account_id)).widget_config
        account = await storage.update_account(account_id, fields)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        return account.widget_config

    async def regenerate_api_key(self, storage, account_id: str) -> str:
        api_key = generate_api_key()
        account = await storage.update_account(account_id, {"api_key": api_key})
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        logger.info(f"API key regenerated for account {account_id}")
        return api_key

    async def public_widget_config(self, storage, api_key: str) -> Dict[str, Any]:
        """Widget appearance for an embed key; unknown keys get the defaults."""
        account = await storage.find_account_by_api_key(api_key)
        config = account.widget_config if account else WidgetConfig()
        return config.model_dump(mode="json")

    def usage_and_limits(self, account: Account) -> UsageResponse:
        return UsageResponse(
            plan=account.plan,
            messages_this_month=account.usage.messages_this_month,
            total_messages=account.usage.total_messages,
            limit=monthly_message_limit(account.plan),
            remaining=remaining_messages(account),
            last_reset_date=account.usage.last_reset_date,
        )

    async def get_usage_and_limits(self, storage, account_id: str) -> UsageResponse:
        return self.usage_and_limits(await self.get_account(storage, account_id))

    # ----- administration -----

    async def list_accounts(self, storage, limit: int = 50, offset: int = 0) -> List[AdminAccountResponse]:
        accounts = await storage.list_accounts(limit=limit, offset=offset)
        return [AdminAccountResponse.model_validate(a) for a in accounts]

    async def admin_stats(self, storage) -> Dict[str, Any]:
        total = 0
        active = 0
        plans = Counter({plan.value: 0 for plan in PlanType})
        offset = 0
        while True:
            page = await storage.list_accounts(limit=ADMIN_PAGE_SIZE, offset=offset)
            for account in page:
                total += 1
                plans[account.plan.value] += 1
                if account.subscription.status == SubscriptionStatus.ACTIVE:
                    active += 1
            if len(page) < ADMIN_PAGE_SIZE:
                break
            offset += ADMIN_PAGE_SIZE
        return {"total_accounts": total, "active_subscriptions": active, "plan_distribution": dict(plans)}

    async def change_plan(self, storage, account_id: str, plan: PlanType) -> Account:
        account = await storage.update_account(account_id, {
            "subscription.plan": PlanType(plan).value,
            "subscription.status": SubscriptionStatus.ACTIVE.value,
        })
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        logger.info(f"Plan for account {account_id} changed to {account.plan.value}")
        return account

    async def reset_usage(self, storage, account_id: str) -> Account:
        account = await storage.reset_monthly_usage(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        logger.info(f"Monthly usage reset for account {account_id}")
        return account


account_service = AccountService()
