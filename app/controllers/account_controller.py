from fastapi import APIRouter, Depends
from app.core.database import get_storage
from app.core.dependencies import get_current_account
from app.models.account import Account
from app.schemas.account import AccountResponse, LoginRequest, SignupRequest, WidgetConfigUpdate
from app.services.account_service import account_service
from app.utils.response import success_response

router = APIRouter(prefix="/accounts", tags=["accounts"])
config_router = APIRouter(tags=["widget"])


@router.post("/signup", status_code=201)
async def signup(data: SignupRequest, storage=Depends(get_storage)):
    result = await account_service.signup(storage, data)
    return success_response(data=result.model_dump(mode="json"), message="Account created successfully")


@router.post("/login")
async def login(data: LoginRequest, storage=Depends(get_storage)):
    result = await account_service.login(storage, data.email, data.password)
    return success_response(data=result.model_dump(mode="json"), message="Login successful")


@router.get("/profile")
async def get_profile(account: Account = Depends(get_current_account)):
    return success_response(data=AccountResponse.model_validate(account).model_dump(mode="json"))


@router.put("/widget-config")
async def update_widget_config(
    update: WidgetConfigUpdate,
    account: Account = Depends(get_current_account),
    storage=Depends(get_storage),
):
    config = await account_service.update_widget_config(storage, account.id, update)
    return success_response(data=config.model_dump(mode="json"), message="Widget configuration updated")


@router.post("/regenerate-api-key")
async def regenerate_api_key(account: Account = Depends(get_current_account), storage=Depends(get_storage)):
    api_key = await account_service.regenerate_api_key(storage, account.id)
    return success_response(data={"api_key": api_key}, message="API key regenerated")


@router.get("/usage")
async def get_usage(account: Account = Depends(get_current_account)):
    return success_response(data=account_service.usage_and_limits(account).model_dump(mode="json"))


@config_router.get("/config/{api_key}")
async def widget_config(api_key: str, storage=Depends(get_storage)):
    return success_response(data=await account_service.public_widget_config(storage, api_key))
