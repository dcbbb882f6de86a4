from fastapi import APIRouter, Depends, Query, Request
from app.core.database import get_storage
from app.core.dependencies import get_chat_service, get_current_account, get_widget_account
from app.models.account import Account
from app.models.chat_session import SessionContext, VisitorContext, WebsiteContext
from app.schemas.chat import ChatAskRequest, MessageLogResponse, RatingRequest, SessionHistoryResponse
from app.services.chat_service import ChatService
from app.utils.response import success_response

router = APIRouter(prefix="/chat", tags=["chat"])


def _session_context(request: Request, body: ChatAskRequest) -> SessionContext:
    return SessionContext(
        website=WebsiteContext(
            domain=body.website or "unknown",
            page=body.page or request.headers.get("referer") or "/",
            title=body.title,
        ),
        visitor=VisitorContext(
            fingerprint=body.fingerprint,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            timezone=body.timezone,
        ),
    )


@router.post("/ask")
async def ask(
    body: ChatAskRequest,
    request: Request,
    account: Account = Depends(get_widget_account),
    service: ChatService = Depends(get_chat_service),
    storage=Depends(get_storage),
):
    result = await service.submit_turn(
        storage, account, body.session_id, body.message, _session_context(request, body)
    )
    return success_response(data=result.model_dump(mode="json"), message="Message processed successfully")


@router.get("/history/{session_id}")
async def get_chat_history(
    session_id: str,
    account: Account = Depends(get_widget_account),
    service: ChatService = Depends(get_chat_service),
    storage=Depends(get_storage),
):
    session = await service.get_session_history(storage, session_id, account.id)
    return success_response(data=SessionHistoryResponse.model_validate(session).model_dump(mode="json"))


@router.post("/session/{session_id}/end")
async def end_session(
    session_id: str,
    account: Account = Depends(get_widget_account),
    service: ChatService = Depends(get_chat_service),
    storage=Depends(get_storage),
):
    session = await service.end_session(storage, session_id, account.id)
    return success_response(
        data={"session_id": session.session_id, "status": session.status.value, "duration": session.duration},
        message="Session ended",
    )


@router.post("/session/{session_id}/rating")
async def rate_session(
    session_id: str,
    body: RatingRequest,
    account: Account = Depends(get_widget_account),
    service: ChatService = Depends(get_chat_service),
    storage=Depends(get_storage),
):
    session = await service.rate_session(storage, session_id, account.id, body.score, body.feedback)
    return success_response(data=session.rating.model_dump(mode="json"), message="Thanks for your feedback")


@router.get("/logs")
async def list_logs(
    limit: int = Query(50, ge=1, le=500),
    account: Account = Depends(get_current_account),
    service: ChatService = Depends(get_chat_service),
    storage=Depends(get_storage),
):
    logs = await service.list_logs(storage, account.id, limit=limit)
    return success_response(data=[MessageLogResponse.model_validate(log).model_dump(mode="json") for log in logs])
