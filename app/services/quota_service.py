from typing import Optional
from app.core.pricing import monthly_message_limit
from app.models.account import Account


def can_accept_message(account: Account) -> bool:
    """Quota gate: True while the account is below its plan's monthly limit.

    Pure decision, no side effects. Unbounded plans always pass.
    """
    limit = monthly_message_limit(account.subscription.plan)
    if limit is None:
        return True
    return account.usage.messages_this_month < limit


def remaining_messages(account: Account) -> Optional[int]:
    limit = monthly_message_limit(account.subscription.plan)
    if limit is None:
        return None
    return max(limit - account.usage.messages_this_month, 0)
