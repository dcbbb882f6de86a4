from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from app.core.database import get_storage
from app.core.dependencies import get_current_account
from app.models.account import Account
from app.services.analytics_service import analytics_service
from app.utils.response import success_response
from app.utils.time import ensure_utc

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("")
async def get_analytics(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    account: Account = Depends(get_current_account),
    storage=Depends(get_storage),
):
    result = await analytics_service.get_analytics(
        storage, account.id, start=ensure_utc(start_date), end=ensure_utc(end_date)
    )
    return success_response(data=result.model_dump(mode="json"))
