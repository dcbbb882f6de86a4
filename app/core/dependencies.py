import hmac
from typing import Optional
from fastapi import Depends, Header, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from app.core.config import settings
from app.core.database import get_storage
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.models.account import Account
from app.services.account_service import account_service
from app.services.chat_service import chat_service
from app.services.subscription_service import subscription_service

bearer_scheme = HTTPBearer(auto_error=False)


async def get_widget_account(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    api_key: Optional[str] = Query(None, alias="apiKey"),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Account:
    """Widget API key (header or query) or dashboard bearer token.

    The API key is public once embedded in a page, so only visitor-facing
    chat routes accept it.
    """
    return await account_service.authenticate(
        get_storage(request),
        api_key=x_api_key or api_key,
        token=credentials.credentials if credentials else None,
    )


async def get_current_account(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Account:
    """Dashboard owner, bearer token only."""
    if not credentials:
        raise AuthenticationError("Access token required", code="TOKEN_REQUIRED")
    return await account_service.authenticate(get_storage(request), token=credentials.credentials)


def require_admin(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> None:
    if not settings.admin_api_key:
        raise AuthorizationError("Admin access is not configured", code="ADMIN_DISABLED")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.admin_api_key):
        raise AuthorizationError("Invalid admin key", code="INVALID_ADMIN_KEY")


def get_chat_service():
    return chat_service


def get_subscription_service():
    return subscription_service
