from fastapi import APIRouter, Depends, Request
from app.core.database import get_storage
from app.core.dependencies import get_current_account, get_subscription_service
from app.models.account import Account
from app.services.subscription_service import SubscriptionService
from app.utils.response import success_response

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/plans")
async def get_plans(service: SubscriptionService = Depends(get_subscription_service)):
    return success_response(data=service.plans().model_dump(mode="json"))


@router.get("/subscription")
async def get_subscription(
    account: Account = Depends(get_current_account),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return success_response(data=service.details(account).model_dump(mode="json"))


@router.post("/cancel")
async def cancel_subscription(
    account: Account = Depends(get_current_account),
    service: SubscriptionService = Depends(get_subscription_service),
    storage=Depends(get_storage),
):
    details = await service.cancel(storage, account)
    return success_response(
        data=details.model_dump(mode="json"),
        message="Subscription will be cancelled at the end of current billing period",
    )


@router.post("/reactivate")
async def reactivate_subscription(
    account: Account = Depends(get_current_account),
    service: SubscriptionService = Depends(get_subscription_service),
    storage=Depends(get_storage),
):
    details = await service.reactivate(storage, account)
    return success_response(data=details.model_dump(mode="json"), message="Subscription reactivated")


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    service: SubscriptionService = Depends(get_subscription_service),
    storage=Depends(get_storage),
):
    payload = await request.body()
    result = await service.handle_webhook(storage, payload, request.headers.get("stripe-signature"))
    return success_response(data=result, message="Webhook received")
