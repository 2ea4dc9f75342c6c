from fastapi import APIRouter, Depends

from app.api.deps import get_engine, raise_for_service_error
from app.services.engine import RoutingEngine
from app.services.errors import StoreUnavailableError

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/store")
async def store_health(engine: RoutingEngine = Depends(get_engine)) -> dict[str, str]:
    try:
        await engine.store.ping()
    except StoreUnavailableError as exc:
        raise_for_service_error(exc)
    return {"store": "ok"}
