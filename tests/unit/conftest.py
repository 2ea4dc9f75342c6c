from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.domain.notifications import Notice
from app.infra.realtime.feed import ChangeFeed
from app.infra.store.memory import InMemoryChatStore
from app.services.assignment_service import AssignmentLifecycleManager
from app.services.engine import RoutingEngine
from app.services.operator_registry import OperatorRegistry
from app.services.request_queue import RequestQueue


class FakeClock:
    """Strictly increasing clock: every reading is one second after the last."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


@dataclass
class RecordingChatTransport:
    notices: list[Notice] = field(default_factory=list)

    async def deliver(self, notice: Notice) -> None:
        self.notices.append(notice)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> RecordingChatTransport:
    return RecordingChatTransport()


@pytest.fixture
def engine(clock: FakeClock, transport: RecordingChatTransport) -> RoutingEngine:
    changes = ChangeFeed()
    store = InMemoryChatStore(changes=changes)
    registry = OperatorRegistry(store, changes, default_max_chats=3, clock=clock)
    queue = RequestQueue(store, changes, clock=clock)
    lifecycle = AssignmentLifecycleManager(
        store,
        registry,
        queue,
        changes,
        transport=transport,
        auto_assign_attempts=3,
        request_expiry=timedelta(minutes=15),
        clock=clock,
    )
    return RoutingEngine(
        store=store,
        changes=changes,
        registry=registry,
        queue=queue,
        lifecycle=lifecycle,
    )


@pytest.fixture
def bring_online(engine: RoutingEngine):
    async def _bring_online(operator_id: str, max_chats: int = 3, active_chats: int = 0):
        operator = await engine.registry.set_status(
            operator_id,
            name=operator_id.upper(),
            is_online=True,
            is_available=True,
            max_chats=max_chats,
        )
        if active_chats:
            operator = await engine.registry.adjust_load(operator_id, active_chats)
        return operator

    return _bring_online


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("TRUSTED_HOSTS_RAW", "testserver,localhost")
    get_settings.cache_clear()
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
    get_settings.cache_clear()
