from fastapi import APIRouter, Depends, Query
from app.core.database import get_storage
from app.core.dependencies import require_admin
from app.schemas.account import AdminAccountResponse, PlanChangeRequest
from app.services.account_service import account_service
from app.utils.response import success_response

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/accounts")
async def list_accounts(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    storage=Depends(get_storage),
):
    accounts = await account_service.list_accounts(storage, limit=limit, offset=offset)
    return success_response(data=[a.model_dump(mode="json") for a in accounts])


@router.get("/stats")
async def stats(storage=Depends(get_storage)):
    return success_response(data=await account_service.admin_stats(storage))


@router.post("/accounts/{account_id}/plan")
async def change_plan(account_id: str, body: PlanChangeRequest, storage=Depends(get_storage)):
    account = await account_service.change_plan(storage, account_id, body.plan)
    return success_response(
        data=AdminAccountResponse.model_validate(account).model_dump(mode="json"),
        message=f"Plan changed to {account.plan.value}",
    )


@router.post("/accounts/{account_id}/reset-usage")
async def reset_usage(account_id: str, storage=Depends(get_storage)):
    account = await account_service.reset_usage(storage, account_id)
    return success_response(
        data=AdminAccountResponse.model_validate(account).model_dump(mode="json"),
        message="Monthly usage reset",
    )
