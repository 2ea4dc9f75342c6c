from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from app.api.deps import get_engine, get_operator_id, raise_for_service_error
from app.domain.records import ChatAssignment
from app.schemas.assignment import AssignmentResponse, ClaimRejectedResponse
from app.schemas.chat_request import ChatRequestResponse, PendingRequestsResponse
from app.services.engine import RoutingEngine
from app.services.errors import (
    ChatRequestNotFoundError,
    OperatorNotFoundError,
    StoreUnavailableError,
)

router = APIRouter()


@router.get("/pending", response_model=PendingRequestsResponse)
async def list_pending_requests(
    engine: RoutingEngine = Depends(get_engine),
) -> PendingRequestsResponse:
    try:
        requests = await engine.queue.pending()
    except StoreUnavailableError as exc:
        raise_for_service_error(exc)
    return PendingRequestsResponse(
        items=[ChatRequestResponse.model_validate(request) for request in requests]
    )


@router.post(
    "/{request_id}/claim",
    response_model=AssignmentResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ClaimRejectedResponse}},
)
async def claim_request(
    request_id: str,
    engine: RoutingEngine = Depends(get_engine),
    operator_id: str = Depends(get_operator_id),
):
    try:
        result = await engine.lifecycle.claim(request_id, operator_id)
    except (
        ChatRequestNotFoundError,
        OperatorNotFoundError,
        StoreUnavailableError,
    ) as exc:
        raise_for_service_error(exc)

    if isinstance(result, ChatAssignment):
        return AssignmentResponse.model_validate(result)
    rejection = ClaimRejectedResponse.model_validate(result)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=rejection.model_dump(mode="json"),
    )


@router.post("/{request_id}/decline", response_model=ChatRequestResponse)
async def decline_request(
    request_id: str,
    engine: RoutingEngine = Depends(get_engine),
) -> ChatRequestResponse:
    try:
        declined = await engine.lifecycle.decline_request(request_id)
    except (ChatRequestNotFoundError, StoreUnavailableError) as exc:
        raise_for_service_error(exc)
    if declined is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Chat request '{request_id}' was already handled",
        )
    return ChatRequestResponse.model_validate(declined)
