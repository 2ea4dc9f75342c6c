import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.clock import utcnow
from app.domain.enums import AssignmentStatus, ChatRequestStatus, EndedBy, RejectionReason
from app.domain.notifications import (
    ChatAssignedNotice,
    ChatEndedNotice,
    Notice,
    RequestExpiredNotice,
)
from app.domain.records import ChatAssignment, ChatRequest, OperatorStatus
from app.infra.realtime.feed import ChangeFeed
from app.infra.realtime.transport import ChatTransport, NoopChatTransport
from app.infra.store.base import CHAT_ASSIGNMENTS_PATH, CHAT_REQUESTS_PATH, ChatStore
from app.services.errors import (
    AssignmentNotFoundError,
    NoAssignmentBetweenError,
    NoWaitingRequestError,
)
from app.services.operator_registry import OperatorRegistry
from app.services.request_queue import RequestQueue
from app.services.selector import select_operator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClaimRejected:
    reason: RejectionReason
    request_id: str
    operator_id: str

    @property
    def detail(self) -> str:
        if self.reason == RejectionReason.CAPACITY_EXCEEDED:
            return (
                f"Operator '{self.operator_id}' cannot take more chats right now; "
                "select another operator."
            )
        return f"Chat request '{self.request_id}' was already handled; refresh the queue."


@dataclass(slots=True)
class CustomerChatState:
    request: ChatRequest | None
    assignment: ChatAssignment | None


class AssignmentLifecycleManager:
    """Owns the request and assignment state machines.

    Every status change of a request or an assignment, and every change of an
    operator's load, goes through this class. Claims and completions are single
    atomic store commits, so concurrent callers can never double-assign a
    request, open two chats for one customer, or push an operator past capacity.
    """

    def __init__(
        self,
        store: ChatStore,
        registry: OperatorRegistry,
        queue: RequestQueue,
        changes: ChangeFeed,
        transport: ChatTransport | None = None,
        auto_assign_attempts: int = 3,
        request_expiry: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.registry = registry
        self.queue = queue
        self.changes = changes
        self.transport = transport or NoopChatTransport()
        self.auto_assign_attempts = auto_assign_attempts
        self.request_expiry = request_expiry
        self.clock = clock

    async def request_chat(
        self,
        customer_id: str,
        customer_name: str,
        message: str,
    ) -> ChatRequest:
        existing = await self.store.get_open_assignment_for_customer(customer_id.strip())
        if existing is not None:
            fulfilled = await self.store.get_request(existing.request_id)
            if fulfilled is not None:
                return fulfilled
        return await self.queue.enqueue(customer_id, customer_name, message)

    async def auto_assign(self, customer_id: str) -> ChatAssignment | None:
        customer_id = customer_id.strip()
        existing = await self.store.get_open_assignment_for_customer(customer_id)
        if existing is not None:
            return existing

        request = await self.queue.waiting_for_customer(customer_id)
        if request is None:
            raise NoWaitingRequestError(customer_id)

        for _ in range(self.auto_assign_attempts):
            operator_id = select_operator(await self.registry.snapshot())
            if operator_id is None:
                logger.info("No assignable operator for request %s; left waiting", request.id)
                return None

            result = await self.claim(request.id, operator_id)
            if isinstance(result, ChatAssignment):
                return result
            if result.reason == RejectionReason.ALREADY_HANDLED:
                return await self.store.get_open_assignment_for_customer(customer_id)

        logger.info(
            "Auto-assign for request %s gave up after %d attempts",
            request.id,
            self.auto_assign_attempts,
        )
        return None

    async def claim(self, request_id: str, operator_id: str) -> ChatAssignment | ClaimRejected:
        outcome = await self.store.claim(request_id, operator_id, self.clock())
        if outcome.assignment is None:
            reason = outcome.rejection or RejectionReason.ALREADY_HANDLED
            logger.info(
                "Claim of request %s by operator %s rejected: %s",
                request_id,
                operator_id,
                reason.value,
            )
            return ClaimRejected(reason=reason, request_id=request_id, operator_id=operator_id)

        assignment = outcome.assignment
        logger.info(
            "Request %s claimed by operator %s as assignment %s",
            request_id,
            operator_id,
            assignment.id,
        )
        await self._deliver(
            ChatAssignedNotice(
                assignment_id=assignment.id,
                customer_id=assignment.customer_id,
                operator_id=assignment.operator_id,
                operator_name=assignment.operator_name,
                accepted_at=assignment.accepted_at or assignment.created_at,
            )
        )
        return assignment

    async def decline_request(self, request_id: str) -> ChatRequest | None:
        return await self.queue.mark_terminal(request_id, ChatRequestStatus.REJECTED)

    async def end_chat(
        self,
        assignment_id: str,
        ended_by: EndedBy = EndedBy.OPERATOR,
    ) -> ChatAssignment:
        outcome = await self.store.complete_assignment(assignment_id, ended_by, self.clock())
        assignment = outcome.assignment
        if not outcome.changed:
            return assignment

        logger.info(
            "Assignment %s completed by %s; operator %s released",
            assignment.id,
            ended_by.value,
            assignment.operator_id,
        )
        await self._deliver(
            ChatEndedNotice(
                assignment_id=assignment.id,
                customer_id=assignment.customer_id,
                operator_id=assignment.operator_id,
                ended_by=ended_by,
                completed_at=assignment.completed_at or self.clock(),
            )
        )
        return assignment

    async def end_chat_between(
        self,
        customer_id: str,
        operator_id: str,
        ended_by: EndedBy = EndedBy.CUSTOMER,
    ) -> ChatAssignment:
        assignment = await self.store.latest_assignment_between(customer_id, operator_id)
        if assignment is None:
            raise NoAssignmentBetweenError(customer_id, operator_id)
        return await self.end_chat(assignment.id, ended_by)

    async def get_assignment(self, assignment_id: str) -> ChatAssignment:
        assignment = await self.store.get_assignment(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(assignment_id)
        return assignment

    async def get_active_assignments_for(self, operator_id: str) -> list[ChatAssignment]:
        await self.registry.get(operator_id)
        assignments = await self.store.list_assignments(
            operator_id=operator_id, statuses=[AssignmentStatus.ACTIVE]
        )
        return sorted(
            assignments,
            key=lambda assignment: assignment.last_activity_at,
            reverse=True,
        )

    async def get_assignment_for_customer(self, customer_id: str) -> ChatAssignment | None:
        return await self.store.get_open_assignment_for_customer(customer_id)

    async def get_assigned_operator(self, customer_id: str) -> OperatorStatus | None:
        assignment = await self.store.get_open_assignment_for_customer(customer_id)
        if assignment is None or assignment.status != AssignmentStatus.ACTIVE:
            return None
        return await self.store.get_operator(assignment.operator_id)

    async def record_activity(
        self,
        assignment_id: str,
        at: datetime | None = None,
    ) -> ChatAssignment:
        assignment = await self.store.record_activity(assignment_id, at or self.clock())
        if assignment is None:
            raise AssignmentNotFoundError(assignment_id)
        return assignment

    async def customer_state(self, customer_id: str) -> CustomerChatState:
        return CustomerChatState(
            request=await self.queue.latest_for_customer(customer_id),
            assignment=await self.store.get_open_assignment_for_customer(customer_id),
        )

    async def expire_stale_requests(self, now: datetime | None = None) -> list[ChatRequest]:
        cutoff = (now or self.clock()) - self.request_expiry
        expired = await self.queue.expire_waiting_before(cutoff)
        for request in expired:
            # Superseded requests are dropped quietly; only the latest one is announced.
            latest = await self.queue.latest_for_customer(request.customer_id)
            if latest is not None and latest.id != request.id:
                continue
            await self._deliver(
                RequestExpiredNotice(
                    request_id=request.id,
                    customer_id=request.customer_id,
                    created_at=request.created_at,
                )
            )
        if expired:
            logger.info("Expired %d waiting chat requests", len(expired))
        return expired

    def watch_customer(self, customer_id: str) -> AsyncIterator[CustomerChatState]:
        async def _load() -> CustomerChatState:
            return await self.customer_state(customer_id)

        return self.changes.watch([CHAT_REQUESTS_PATH, CHAT_ASSIGNMENTS_PATH], _load)

    def watch_operator_assignments(self, operator_id: str) -> AsyncIterator[list[ChatAssignment]]:
        async def _load() -> list[ChatAssignment]:
            return await self.get_active_assignments_for(operator_id)

        return self.changes.watch(CHAT_ASSIGNMENTS_PATH, _load)

    async def _deliver(self, notice: Notice) -> None:
        # The commit already happened; a transport failure must not undo it.
        try:
            await self.transport.deliver(notice)
        except Exception:
            logger.exception("Failed to deliver %s notice", notice.kind.value)
