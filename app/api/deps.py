from fastapi import Header, HTTPException, Request, status

from app.domain.exceptions import InvalidAssignmentTransition, InvalidRequestTransition
from app.services.engine import RoutingEngine
from app.services.errors import StoreUnavailableError


def get_engine(request: Request) -> RoutingEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Routing engine is not initialized",
        )
    return engine


async def get_operator_id(
    x_operator_id: str = Header(alias="X-Operator-Id", min_length=1, max_length=128),
) -> str:
    return x_operator_id.strip()


async def get_customer_id(
    x_customer_id: str = Header(alias="X-Customer-Id", min_length=1, max_length=128),
) -> str:
    return x_customer_id.strip()


def raise_for_service_error(exc: Exception) -> None:
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    if isinstance(exc, (InvalidRequestTransition, InvalidAssignmentTransition)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc
