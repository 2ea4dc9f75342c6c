from fastapi import APIRouter, Depends

from app.api.deps import get_engine, raise_for_service_error
from app.schemas.assignment import AssignmentListResponse, AssignmentResponse
from app.schemas.operator import (
    OperatorListResponse,
    OperatorResponse,
    SetOperatorStatusRequest,
)
from app.services.engine import RoutingEngine
from app.services.errors import OperatorNotFoundError, StoreUnavailableError

router = APIRouter()


def _to_operator_response(operator) -> OperatorResponse:
    return OperatorResponse.model_validate(operator)


@router.get("", response_model=OperatorListResponse)
async def list_operators(
    engine: RoutingEngine = Depends(get_engine),
) -> OperatorListResponse:
    try:
        operators = await engine.registry.snapshot()
    except StoreUnavailableError as exc:
        raise_for_service_error(exc)
    return OperatorListResponse(
        items=[_to_operator_response(operator) for operator in operators]
    )


@router.get("/{operator_id}", response_model=OperatorResponse)
async def get_operator(
    operator_id: str,
    engine: RoutingEngine = Depends(get_engine),
) -> OperatorResponse:
    try:
        operator = await engine.registry.get(operator_id)
    except (OperatorNotFoundError, StoreUnavailableError) as exc:
        raise_for_service_error(exc)
    return _to_operator_response(operator)


@router.put("/{operator_id}/status", response_model=OperatorResponse)
async def set_operator_status(
    operator_id: str,
    payload: SetOperatorStatusRequest,
    engine: RoutingEngine = Depends(get_engine),
) -> OperatorResponse:
    try:
        operator = await engine.registry.set_status(
            operator_id,
            name=payload.name,
            is_online=payload.is_online,
            is_available=payload.is_available,
            max_chats=payload.max_chats,
        )
    except (StoreUnavailableError, ValueError) as exc:
        raise_for_service_error(exc)
    return _to_operator_response(operator)


@router.get("/{operator_id}/assignments", response_model=AssignmentListResponse)
async def list_active_assignments(
    operator_id: str,
    engine: RoutingEngine = Depends(get_engine),
) -> AssignmentListResponse:
    try:
        assignments = await engine.lifecycle.get_active_assignments_for(operator_id)
    except (OperatorNotFoundError, StoreUnavailableError) as exc:
        raise_for_service_error(exc)
    return AssignmentListResponse(
        items=[AssignmentResponse.model_validate(assignment) for assignment in assignments]
    )
