import logging
from typing import Any, Dict, Optional

from app.core.exceptions import AccountAlreadyExists, ValidationError
from app.core.pricing import USAGE_LIMITS, plan_catalogue
from app.models.account import Account, PlanType, SubscriptionStatus
from app.models.subscription import SubscriptionRecord
from app.schemas.subscription import PlanResponse, PlansResponse, SubscriptionDetails
from app.services.account_service import account_service
from app.services.payment_gateway import PaymentGateway, StripeGateway
from app.utils.time import from_unix

logger = logging.getLogger("subscription_service")

# processor status -> account subscription status
STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.UNPAID,
    "unpaid": SubscriptionStatus.UNPAID,
}

SUBSCRIPTION_EVENTS = ("subscription.created", "subscription.updated", "subscription.deleted")
PAYMENT_FAILED_EVENT = "invoice.payment_failed"


def _event_name(event_type: str) -> str:
    return event_type[len("customer."):] if event_type.startswith("customer.") else event_type


def _plan_from(value: Optional[str]) -> Optional[PlanType]:
    if not value:
        return None
    try:
        return PlanType(value)
    except ValueError:
        logger.warning(f"Unknown plan in webhook metadata: {value}")
        return None


def _first_price(obj: Dict[str, Any]) -> Dict[str, Any]:
    items = (obj.get("items") or {}).get("data") or []
    return (items[0].get("price") or {}) if items else {}


class SubscriptionService:
    def __init__(self, gateway: Optional[PaymentGateway] = None):
        self.gateway = gateway or StripeGateway()

    def plans(self) -> PlansResponse:
        return PlansResponse(plans=[PlanResponse(**plan) for plan in plan_catalogue()])

    def details(self, account: Account) -> SubscriptionDetails:
        sub = account.subscription
        return SubscriptionDetails(
            plan=sub.plan,
            status=sub.status,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            cancel_at_period_end=sub.cancel_at_period_end,
            usage=account_service.usage_and_limits(account),
            limits=USAGE_LIMITS[sub.plan],
        )

    async def _set_cancel_flag(self, storage, account: Account, cancel: bool) -> SubscriptionDetails:
        subscription_id = account.subscription.stripe_subscription_id
        if not subscription_id:
            raise ValidationError("No active subscription found", code="NO_SUBSCRIPTION")
        if cancel:
            result = await self.gateway.cancel_at_period_end(subscription_id)
        else:
            result = await self.gateway.reactivate(subscription_id)

        fields: Dict[str, Any] = {"subscription.cancel_at_period_end": cancel}
        if result.get("current_period_end"):
            fields["subscription.current_period_end"] = result["current_period_end"]
        updated = await storage.update_account(account.id, fields) or account
        await storage.update_subscription_record(subscription_id, {"cancel_at_period_end": cancel})
        logger.info(f"Subscription {subscription_id} cancel_at_period_end={cancel}")
        return self.details(updated)

    async def cancel(self, storage, account: Account) -> SubscriptionDetails:
        return await self._set_cancel_flag(storage, account, True)

    async def reactivate(self, storage, account: Account) -> SubscriptionDetails:
        return await self._set_cancel_flag(storage, account, False)

    # ----- webhooks -----

    async def handle_webhook(self, storage, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        event = self.gateway.parse_event(payload, signature)
        return await self.handle_event(storage, event)

    async def handle_event(self, storage, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type", "unknown")
        obj = (event.get("data") or {}).get("object") or {}
        name = _event_name(event_type)
        handled = False
        if name in SUBSCRIPTION_EVENTS:
            handled = await self._on_subscription_change(storage, obj, deleted=name.endswith("deleted"))
        elif name == PAYMENT_FAILED_EVENT:
            handled = await self._on_payment_failed(storage, obj)
        else:
            logger.info(f"Unhandled webhook event type {event_type}")
        return {"received": True, "event_type": event_type, "handled": handled}

    async def _find_account(self, storage, obj: Dict[str, Any]) -> Optional[Account]:
        metadata = obj.get("metadata") or {}
        account_id = metadata.get("account_id") or metadata.get("accountId") or metadata.get("userId")
        if account_id:
            account = await storage.find_account_by_id(account_id)
            if account:
                return account
        customer_id = obj.get("customer")
        if customer_id:
            return await storage.find_account_by_customer_id(customer_id)
        return None

    async def _on_subscription_change(self, storage, obj: Dict[str, Any], deleted: bool) -> bool:
        account = await self._find_account(storage, obj)
        if not account:
            logger.warning(f"Webhook for subscription {obj.get('id')} matches no account")
            return False

        processor_status = "canceled" if deleted else (obj.get("status") or "active")
        status = STATUS_MAP.get(processor_status)
        metadata = obj.get("metadata") or {}
        plan = _plan_from(metadata.get("plan")) or account.plan
        if status == SubscriptionStatus.CANCELLED:
            plan = PlanType.FREE

        fields: Dict[str, Any] = {
            "subscription.plan": plan.value,
            "subscription.cancel_at_period_end": bool(obj.get("cancel_at_period_end", False)),
        }
        if status is not None:
            fields["subscription.status"] = status.value
        else:
            logger.warning(f"Unmapped processor status {processor_status}, keeping {account.subscription.status.value}")
        if obj.get("id"):
            fields["subscription.stripe_subscription_id"] = obj["id"]
        if obj.get("customer"):
            fields["subscription.stripe_customer_id"] = obj["customer"]
        if obj.get("current_period_start"):
            fields["subscription.current_period_start"] = from_unix(obj["current_period_start"])
        if obj.get("current_period_end"):
            fields["subscription.current_period_end"] = from_unix(obj["current_period_end"])
        await storage.update_account(account.id, fields)
        logger.info(f"Account {account.id} subscription -> {plan.value}/{processor_status}")

        if obj.get("id"):
            await self._upsert_record(storage, account, obj, plan, processor_status)
        return True

    async def _upsert_record(self, storage, account: Account, obj: Dict[str, Any],
                             plan: PlanType, processor_status: str) -> None:
        status = "cancelled" if processor_status == "canceled" else processor_status
        price = _first_price(obj)
        recurring = price.get("recurring") or {}
        fields: Dict[str, Any] = {
            "plan": plan.value,
            "status": status,
            "cancel_at_period_end": bool(obj.get("cancel_at_period_end", False)),
            "current_period_start": from_unix(obj.get("current_period_start")),
            "current_period_end": from_unix(obj.get("current_period_end")),
            "canceled_at": from_unix(obj.get("canceled_at")),
        }
        if price.get("id"):
            fields["price_id"] = price["id"]
        if price.get("unit_amount") is not None:
            fields["amount"] = price["unit_amount"]
        if price.get("currency"):
            fields["currency"] = price["currency"]
        if recurring.get("interval") in ("month", "year"):
            fields["interval"] = recurring["interval"]

        external_id = obj["id"]
        if await storage.update_subscription_record(external_id, fields):
            return
        record = SubscriptionRecord(
            account_id=account.id,
            external_subscription_id=external_id,
            metadata=obj.get("metadata") or {},
            **fields,
        )
        try:
            await storage.create_subscription_record(record)
        except AccountAlreadyExists:
            # created by a concurrent delivery of the same event
            await storage.update_subscription_record(external_id, fields)

    async def _on_payment_failed(self, storage, invoice: Dict[str, Any]) -> bool:
        customer_id = invoice.get("customer")
        account = await storage.find_account_by_customer_id(customer_id) if customer_id else None
        if not account:
            logger.warning(f"Payment failure for unknown customer {customer_id}")
            return False
        await storage.update_account(account.id, {"subscription.status": SubscriptionStatus.PAST_DUE.value})
        subscription_id = invoice.get("subscription")
        if subscription_id:
            await storage.update_subscription_record(subscription_id, {"status": SubscriptionStatus.PAST_DUE.value})
        logger.warning(f"Payment failed for account {account.id}, subscription marked past_due")
        return True


subscription_service = SubscriptionService()
