"""
Stripe payment integration
Cancel/reactivate subscriptions and verify webhook payloads. The Stripe SDK is
synchronous, so calls run in a worker thread.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol

import stripe

from app.core.config import Settings, settings
from app.core.exceptions import PaymentGatewayError, ValidationError
from app.utils.time import from_unix

logger = logging.getLogger("payment_gateway")


class PaymentGateway(Protocol):
    async def cancel_at_period_end(self, subscription_id: str) -> Dict[str, Any]:
        ...

    async def reactivate(self, subscription_id: str) -> Dict[str, Any]:
        ...

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and decode a webhook payload.

        Raises:
            ValidationError: payload or signature is invalid
        """
        ...


def _subscription_summary(subscription) -> Dict[str, Any]:
    return {
        "id": getattr(subscription, "id", None),
        "status": getattr(subscription, "status", None),
        "cancel_at_period_end": bool(getattr(subscription, "cancel_at_period_end", False)),
        "current_period_end": from_unix(getattr(subscription, "current_period_end", None)),
    }


class StripeGateway:
    def __init__(self, config: Settings = settings):
        self.api_key = config.stripe_secret_key
        self.webhook_secret = config.stripe_webhook_secret

    async def _modify(self, subscription_id: str, **params) -> Dict[str, Any]:
        if not self.api_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY not configured", code="PAYMENT_NOT_CONFIGURED")
        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.modify, subscription_id, api_key=self.api_key, **params
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe request failed for subscription {subscription_id}: {e}")
            raise PaymentGatewayError(f"Payment provider error: {e.user_message or 'request failed'}")
        return _subscription_summary(subscription)

    async def cancel_at_period_end(self, subscription_id: str) -> Dict[str, Any]:
        return await self._modify(subscription_id, cancel_at_period_end=True)

    async def reactivate(self, subscription_id: str) -> Dict[str, Any]:
        return await self._modify(subscription_id, cancel_at_period_end=False)

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if self.webhook_secret:
            if not signature:
                raise ValidationError("Missing stripe-signature header", code="INVALID_WEBHOOK")
            try:
                stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            except ValueError as e:
                raise ValidationError(f"Invalid payload: {e}", code="INVALID_WEBHOOK")
            except stripe.SignatureVerificationError as e:
                logger.warning(f"Webhook signature verification failed: {e}")
                raise ValidationError("Invalid signature", code="INVALID_WEBHOOK")
        else:
            logger.warning("STRIPE_WEBHOOK_SECRET not set, accepting unsigned webhook")
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise ValidationError(f"Invalid payload: {e}", code="INVALID_WEBHOOK")
        if not isinstance(event, dict) or "type" not in event:
            raise ValidationError("Invalid payload: missing event type", code="INVALID_WEBHOOK")
        return event
