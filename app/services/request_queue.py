import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime

from app.core.clock import utcnow
from app.domain.enums import ChatRequestStatus
from app.domain.records import ChatRequest
from app.domain.state_machine import RequestLifecycle
from app.infra.realtime.feed import ChangeFeed
from app.infra.store.base import CHAT_REQUESTS_PATH, ChatStore
from app.services.errors import ChatRequestNotFoundError

logger = logging.getLogger(__name__)


class RequestQueue:
    def __init__(
        self,
        store: ChatStore,
        changes: ChangeFeed,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.changes = changes
        self.clock = clock

    async def enqueue(
        self,
        customer_id: str,
        customer_name: str,
        message: str,
    ) -> ChatRequest:
        cleaned_customer_id = customer_id.strip()
        if not cleaned_customer_id:
            raise ValueError("Customer id cannot be empty.")
        cleaned_name = customer_name.strip() or cleaned_customer_id

        request = await self.store.create_request(
            customer_id=cleaned_customer_id,
            customer_name=cleaned_name,
            message=message.strip(),
            now=self.clock(),
        )
        logger.info("Chat request %s queued for customer %s", request.id, request.customer_id)
        return request

    async def get(self, request_id: str) -> ChatRequest:
        request = await self.store.get_request(request_id)
        if request is None:
            raise ChatRequestNotFoundError(request_id)
        return request

    async def pending(self) -> list[ChatRequest]:
        """Waiting requests, newest first, without superseded ones."""
        return await self.store.list_pending_requests()

    async def latest_for_customer(self, customer_id: str) -> ChatRequest | None:
        return await self.store.latest_request_for_customer(customer_id)

    async def waiting_for_customer(self, customer_id: str) -> ChatRequest | None:
        request = await self.store.latest_request_for_customer(customer_id)
        if request is None or request.status != ChatRequestStatus.WAITING:
            return None
        return request

    async def mark_terminal(
        self,
        request_id: str,
        status: ChatRequestStatus,
        operator_id: str | None = None,
    ) -> ChatRequest | None:
        """Move a waiting request to ``status``.

        Returns ``None`` when the request had already left ``waiting``; callers
        treat that as "already handled" and refresh their view.
        """
        RequestLifecycle.action_for(status)
        if status == ChatRequestStatus.ASSIGNED and not operator_id:
            raise ValueError("An operator id is required to mark a request assigned.")

        updated = await self.store.mark_request_terminal(
            request_id, status, operator_id, self.clock()
        )
        if updated is None:
            if await self.store.get_request(request_id) is None:
                raise ChatRequestNotFoundError(request_id)
            logger.info("Chat request %s already handled", request_id)
            return None
        return updated

    async def expire_waiting_before(self, cutoff: datetime) -> list[ChatRequest]:
        expired: list[ChatRequest] = []
        for request in await self.store.list_waiting_created_before(cutoff):
            updated = await self.mark_terminal(request.id, ChatRequestStatus.REJECTED)
            if updated is not None:
                expired.append(updated)
        return expired

    def watch_pending(self) -> AsyncIterator[list[ChatRequest]]:
        return self.changes.watch(CHAT_REQUESTS_PATH, self.pending)

    def watch_customer_request(self, customer_id: str) -> AsyncIterator[ChatRequest | None]:
        async def _load() -> ChatRequest | None:
            return await self.waiting_for_customer(customer_id)

        return self.changes.watch(CHAT_REQUESTS_PATH, _load)
