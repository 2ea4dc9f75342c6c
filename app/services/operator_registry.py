import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime

from app.core.clock import utcnow
from app.domain.records import OperatorStatus, is_assignable
from app.infra.realtime.feed import ChangeFeed
from app.infra.store.base import OPERATORS_PATH, ChatStore
from app.services.errors import OperatorNotFoundError

logger = logging.getLogger(__name__)


class OperatorRegistry:
    """Online/availability flags, capacity and load of every operator."""

    is_assignable = staticmethod(is_assignable)

    def __init__(
        self,
        store: ChatStore,
        changes: ChangeFeed,
        default_max_chats: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.changes = changes
        self.default_max_chats = default_max_chats
        self.clock = clock

    async def set_status(
        self,
        operator_id: str,
        *,
        name: str | None = None,
        is_online: bool | None = None,
        is_available: bool | None = None,
        max_chats: int | None = None,
    ) -> OperatorStatus:
        cleaned_id = operator_id.strip()
        if not cleaned_id:
            raise ValueError("Operator id cannot be empty.")
        if max_chats is not None and max_chats < 1:
            raise ValueError("max_chats must be a positive integer.")
        cleaned_name = name.strip() if name is not None else None

        operator = await self.store.upsert_operator(
            cleaned_id,
            now=self.clock(),
            default_max_chats=self.default_max_chats,
            name=cleaned_name or None,
            is_online=is_online,
            is_available=is_available,
            max_chats=max_chats,
        )
        logger.debug(
            "Operator %s status online=%s available=%s load=%d/%d",
            operator.id,
            operator.is_online,
            operator.is_available,
            operator.active_chats,
            operator.max_chats,
        )
        return operator

    async def go_online(self, operator_id: str) -> OperatorStatus:
        return await self.set_status(operator_id, is_online=True)

    async def go_offline(self, operator_id: str) -> OperatorStatus:
        return await self.set_status(operator_id, is_online=False)

    async def adjust_load(self, operator_id: str, delta: int) -> OperatorStatus:
        operator = await self.store.adjust_load(operator_id, delta)
        if operator is None:
            raise OperatorNotFoundError(operator_id)
        return operator

    async def get(self, operator_id: str) -> OperatorStatus:
        operator = await self.store.get_operator(operator_id)
        if operator is None:
            raise OperatorNotFoundError(operator_id)
        return operator

    async def snapshot(self) -> list[OperatorStatus]:
        return await self.store.list_operators()

    async def is_operator_available(self, operator_id: str) -> bool:
        operator = await self.store.get_operator(operator_id)
        return operator is not None and is_assignable(operator)

    async def mark_all_offline(self) -> int:
        changed = await self.store.set_all_offline()
        if changed:
            logger.info("Marked %d operators offline", changed)
        return changed

    def watch_operators(self) -> AsyncIterator[list[OperatorStatus]]:
        return self.changes.watch(OPERATORS_PATH, self.snapshot)
