import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from app.core.config import Settings
from app.infra.realtime.feed import ChangeFeed
from app.infra.realtime.transport import ChatTransport
from app.infra.store.base import ChatStore
from app.services.assignment_service import AssignmentLifecycleManager
from app.services.errors import StoreUnavailableError
from app.services.operator_registry import OperatorRegistry
from app.services.request_queue import RequestQueue

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RoutingEngine:
    store: ChatStore
    changes: ChangeFeed
    registry: OperatorRegistry
    queue: RequestQueue
    lifecycle: AssignmentLifecycleManager


def build_engine(
    store: ChatStore,
    changes: ChangeFeed,
    settings: Settings,
    transport: ChatTransport | None = None,
) -> RoutingEngine:
    registry = OperatorRegistry(
        store=store,
        changes=changes,
        default_max_chats=settings.default_max_chats,
    )
    queue = RequestQueue(store=store, changes=changes)
    lifecycle = AssignmentLifecycleManager(
        store=store,
        registry=registry,
        queue=queue,
        changes=changes,
        transport=transport,
        auto_assign_attempts=settings.auto_assign_attempts,
        request_expiry=timedelta(minutes=settings.request_expiry_minutes),
    )
    return RoutingEngine(
        store=store,
        changes=changes,
        registry=registry,
        queue=queue,
        lifecycle=lifecycle,
    )


async def run_request_sweeper(engine: RoutingEngine, interval_seconds: float) -> None:
    """Expire stale waiting requests every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await engine.lifecycle.expire_stale_requests()
        except StoreUnavailableError as exc:
            logger.warning("Request sweep skipped: %s", exc)
        except Exception:
            logger.exception("Request sweep failed")
