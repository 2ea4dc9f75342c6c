from fastapi import APIRouter, Depends

from app.api.deps import get_engine, raise_for_service_error
from app.domain.enums import EndedBy
from app.schemas.assignment import AssignmentResponse, RecordActivityRequest
from app.services.engine import RoutingEngine
from app.services.errors import AssignmentNotFoundError, StoreUnavailableError

router = APIRouter()


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: str,
    engine: RoutingEngine = Depends(get_engine),
) -> AssignmentResponse:
    try:
        assignment = await engine.lifecycle.get_assignment(assignment_id)
    except (AssignmentNotFoundError, StoreUnavailableError) as exc:
        raise_for_service_error(exc)
    return AssignmentResponse.model_validate(assignment)


@router.post("/{assignment_id}/end", response_model=AssignmentResponse)
async def end_assignment(
    assignment_id: str,
    engine: RoutingEngine = Depends(get_engine),
) -> AssignmentResponse:
    try:
        assignment = await engine.lifecycle.end_chat(assignment_id, EndedBy.OPERATOR)
    except (AssignmentNotFoundError, StoreUnavailableError) as exc:
        raise_for_service_error(exc)
    return AssignmentResponse.model_validate(assignment)


@router.post("/{assignment_id}/activity", response_model=AssignmentResponse)
async def record_assignment_activity(
    assignment_id: str,
    payload: RecordActivityRequest,
    engine: RoutingEngine = Depends(get_engine),
) -> AssignmentResponse:
    try:
        assignment = await engine.lifecycle.record_activity(assignment_id, payload.at)
    except (AssignmentNotFoundError, StoreUnavailableError) as exc:
        raise_for_service_error(exc)
    return AssignmentResponse.model_validate(assignment)
