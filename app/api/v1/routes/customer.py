from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_customer_id, get_engine, raise_for_service_error
from app.domain.enums import EndedBy
from app.schemas.assignment import (
    AssignmentResponse,
    ChatRequestResultResponse,
    CustomerStateResponse,
    EndCustomerChatRequest,
)
from app.schemas.chat_request import ChatRequestResponse, CreateChatRequest
from app.schemas.operator import OperatorResponse
from app.services.engine import RoutingEngine
from app.services.errors import (
    AssignmentNotFoundError,
    NoAssignmentBetweenError,
    NoWaitingRequestError,
    StoreUnavailableError,
)

router = APIRouter()


def _to_assignment_response(assignment) -> AssignmentResponse | None:
    if assignment is None:
        return None
    return AssignmentResponse.model_validate(assignment)


@router.post("/requests", response_model=ChatRequestResultResponse)
async def request_chat(
    payload: CreateChatRequest,
    engine: RoutingEngine = Depends(get_engine),
    customer_id: str = Depends(get_customer_id),
) -> ChatRequestResultResponse:
    try:
        request = await engine.lifecycle.request_chat(
            customer_id,
            payload.customer_name,
            payload.message,
        )
        assignment = await engine.lifecycle.get_assignment_for_customer(customer_id)
        if payload.auto_assign and assignment is None:
            assignment = await engine.lifecycle.auto_assign(customer_id)
            request = await engine.queue.get(request.id)
    except (NoWaitingRequestError, StoreUnavailableError, ValueError) as exc:
        raise_for_service_error(exc)
    return ChatRequestResultResponse(
        request=ChatRequestResponse.model_validate(request),
        assignment=_to_assignment_response(assignment),
    )


@router.get("/state", response_model=CustomerStateResponse)
async def get_customer_state(
    engine: RoutingEngine = Depends(get_engine),
    customer_id: str = Depends(get_customer_id),
) -> CustomerStateResponse:
    try:
        state = await engine.lifecycle.customer_state(customer_id)
        operator = await engine.lifecycle.get_assigned_operator(customer_id)
    except StoreUnavailableError as exc:
        raise_for_service_error(exc)
    return CustomerStateResponse(
        request=(
            ChatRequestResponse.model_validate(state.request)
            if state.request is not None
            else None
        ),
        assignment=_to_assignment_response(state.assignment),
        operator=(
            OperatorResponse.model_validate(operator) if operator is not None else None
        ),
    )


@router.post("/end", response_model=AssignmentResponse)
async def end_customer_chat(
    payload: EndCustomerChatRequest,
    engine: RoutingEngine = Depends(get_engine),
    customer_id: str = Depends(get_customer_id),
) -> AssignmentResponse:
    try:
        if payload.operator_id is not None:
            assignment = await engine.lifecycle.end_chat_between(
                customer_id, payload.operator_id, EndedBy.CUSTOMER
            )
        else:
            current = await engine.lifecycle.get_assignment_for_customer(customer_id)
            if current is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Customer '{customer_id}' has no open chat",
                )
            assignment = await engine.lifecycle.end_chat(current.id, EndedBy.CUSTOMER)
    except (
        AssignmentNotFoundError,
        NoAssignmentBetweenError,
        StoreUnavailableError,
    ) as exc:
        raise_for_service_error(exc)
    return AssignmentResponse.model_validate(assignment)
