import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.db import ping_database
from app.domain.enums import (
    AssignmentAction,
    AssignmentStatus,
    ChatRequestStatus,
    EndedBy,
    RejectionReason,
)
from app.domain.records import ChatAssignment, ChatRequest, OperatorStatus
from app.domain.state_machine import AssignmentLifecycle
from app.infra.db.repositories import (
    ChatAssignmentRepository,
    ChatRequestRepository,
    OperatorRepository,
    to_chat_assignment,
    to_chat_request,
    to_operator_status,
)
from app.infra.store.base import (
    CHAT_ASSIGNMENTS_PATH,
    CHAT_REQUESTS_PATH,
    OPERATORS_PATH,
    ChangeNotifier,
    ClaimOutcome,
    CompletionOutcome,
)
from app.services.errors import (
    AssignmentNotFoundError,
    ChatRequestNotFoundError,
    OperatorNotFoundError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONNECTIVITY_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, OSError)


class SqlChatStore:
    """PostgreSQL-backed store.

    Conditional writes are expressed as ``UPDATE ... WHERE <precondition>
    RETURNING`` inside one transaction, so concurrent claimants serialize on the
    request row lock and every loser observes zero updated rows. Reads are
    retried on connectivity errors; writes never are.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        changes: ChangeNotifier | None = None,
        read_retries: int = 2,
        retry_delay_seconds: float = 0.2,
    ) -> None:
        self._session_factory = session_factory
        self._changes = changes
        self._read_retries = read_retries
        self._retry_delay_seconds = retry_delay_seconds

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except _CONNECTIVITY_ERRORS as exc:
            logger.error("Store unavailable during %s: %s", operation, exc)
            raise StoreUnavailableError(operation) from exc

    async def _read(
        self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        attempts = self._read_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                async with self._session(operation) as session:
                    return await fn(session)
            except StoreUnavailableError:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Retrying read %s (attempt %d/%d)", operation, attempt + 1, attempts
                )
                await asyncio.sleep(self._retry_delay_seconds * attempt)
        raise StoreUnavailableError(operation)

    async def ping(self) -> None:
        await self._read("ping", ping_database)

    async def get_operator(self, operator_id: str) -> OperatorStatus | None:
        async def _load(session: AsyncSession) -> OperatorStatus | None:
            row = await OperatorRepository(session).get_by_id(operator_id)
            return to_operator_status(row) if row is not None else None

        return await self._read("get_operator", _load)

    async def list_operators(self) -> list[OperatorStatus]:
        async def _load(session: AsyncSession) -> list[OperatorStatus]:
            rows = await OperatorRepository(session).list_all()
            return [to_operator_status(row) for row in rows]

        return await self._read("list_operators", _load)

    async def upsert_operator(
        self,
        operator_id: str,
        *,
        now: datetime,
        default_max_chats: int,
        name: str | None = None,
        is_online: bool | None = None,
        is_available: bool | None = None,
        max_chats: int | None = None,
    ) -> OperatorStatus:
        async with self._session("upsert_operator") as session:
            row = await OperatorRepository(session).upsert(
                operator_id,
                now=now,
                default_max_chats=default_max_chats,
                name=name,
                is_online=is_online,
                is_available=is_available,
                max_chats=max_chats,
            )
            operator = to_operator_status(row)
            await session.commit()
        self._notify(OPERATORS_PATH)
        return operator

    async def adjust_load(self, operator_id: str, delta: int) -> OperatorStatus | None:
        async with self._session("adjust_load") as session:
            row = await OperatorRepository(session).adjust_load(operator_id, delta)
            if row is None:
                await session.rollback()
                return None
            operator = to_operator_status(row)
            await session.commit()
        self._notify(OPERATORS_PATH)
        return operator

    async def set_all_offline(self) -> int:
        async with self._session("set_all_offline") as session:
            changed = await OperatorRepository(session).set_all_offline()
            await session.commit()
        if changed:
            self._notify(OPERATORS_PATH)
        return changed

    async def create_request(
        self,
        customer_id: str,
        customer_name: str,
        message: str,
        now: datetime,
    ) -> ChatRequest:
        async with self._session("create_request") as session:
            row = await ChatRequestRepository(session).create(
                customer_id=customer_id,
                customer_name=customer_name,
                message=message,
                now=now,
            )
            request = to_chat_request(row)
            await session.commit()
        self._notify(CHAT_REQUESTS_PATH)
        return request

    async def get_request(self, request_id: str) -> ChatRequest | None:
        async def _load(session: AsyncSession) -> ChatRequest | None:
            row = await ChatRequestRepository(session).get_by_id(request_id)
            return to_chat_request(row) if row is not None else None

        return await self._read("get_request", _load)

    async def latest_request_for_customer(self, customer_id: str) -> ChatRequest | None:
        async def _load(session: AsyncSession) -> ChatRequest | None:
            row = await ChatRequestRepository(session).latest_for_customer(customer_id)
            return to_chat_request(row) if row is not None else None

        return await self._read("latest_request_for_customer", _load)

    async def list_pending_requests(self) -> list[ChatRequest]:
        async def _load(session: AsyncSession) -> list[ChatRequest]:
            rows = await ChatRequestRepository(session).list_pending()
            return [to_chat_request(row) for row in rows]

        return await self._read("list_pending_requests", _load)

    async def list_waiting_created_before(self, cutoff: datetime) -> list[ChatRequest]:
        async def _load(session: AsyncSession) -> list[ChatRequest]:
            rows = await ChatRequestRepository(session).list_waiting_created_before(cutoff)
            return [to_chat_request(row) for row in rows]

        return await self._read("list_waiting_created_before", _load)

    async def mark_request_terminal(
        self,
        request_id: str,
        status: ChatRequestStatus,
        operator_id: str | None,
        now: datetime,
    ) -> ChatRequest | None:
        async with self._session("mark_request_terminal") as session:
            row = await ChatRequestRepository(session).mark_terminal(
                request_id, status, operator_id, now
            )
            if row is None:
                await session.rollback()
                return None
            request = to_chat_request(row)
            await session.commit()
        self._notify(CHAT_REQUESTS_PATH)
        return request

    async def get_assignment(self, assignment_id: str) -> ChatAssignment | None:
        async def _load(session: AsyncSession) -> ChatAssignment | None:
            row = await ChatAssignmentRepository(session).get_by_id(assignment_id)
            return to_chat_assignment(row) if row is not None else None

        return await self._read("get_assignment", _load)

    async def get_open_assignment_for_customer(
        self, customer_id: str
    ) -> ChatAssignment | None:
        async def _load(session: AsyncSession) -> ChatAssignment | None:
            row = await ChatAssignmentRepository(session).get_open_for_customer(customer_id)
            return to_chat_assignment(row) if row is not None else None

        return await self._read("get_open_assignment_for_customer", _load)

    async def latest_assignment_between(
        self, customer_id: str, operator_id: str
    ) -> ChatAssignment | None:
        async def _load(session: AsyncSession) -> ChatAssignment | None:
            row = await ChatAssignmentRepository(session).latest_between(
                customer_id, operator_id
            )
            return to_chat_assignment(row) if row is not None else None

        return await self._read("latest_assignment_between", _load)

    async def list_assignments(
        self,
        operator_id: str | None = None,
        statuses: Sequence[AssignmentStatus] | None = None,
    ) -> list[ChatAssignment]:
        async def _load(session: AsyncSession) -> list[ChatAssignment]:
            rows = await ChatAssignmentRepository(session).list_filtered(
                operator_id=operator_id, statuses=statuses
            )
            return [to_chat_assignment(row) for row in rows]

        return await self._read("list_assignments", _load)

    async def record_activity(
        self, assignment_id: str, at: datetime
    ) -> ChatAssignment | None:
        async with self._session("record_activity") as session:
            assignments = ChatAssignmentRepository(session)
            row = await assignments.record_activity(assignment_id, at)
            if row is None:
                await session.rollback()
                existing = await assignments.get_by_id(assignment_id)
                return to_chat_assignment(existing) if existing is not None else None
            assignment = to_chat_assignment(row)
            await session.commit()
        self._notify(CHAT_ASSIGNMENTS_PATH)
        return assignment

    async def claim(self, request_id: str, operator_id: str, now: datetime) -> ClaimOutcome:
        async with self._session("claim") as session:
            requests = ChatRequestRepository(session)
            operators = OperatorRepository(session)
            assignments = ChatAssignmentRepository(session)

            if await requests.get_by_id(request_id) is None:
                raise ChatRequestNotFoundError(request_id)
            if await operators.get_by_id(operator_id) is None:
                raise OperatorNotFoundError(operator_id)

            claimed = await requests.mark_terminal(
                request_id, ChatRequestStatus.ASSIGNED, operator_id, now
            )
            if claimed is None or await requests.has_newer_for_customer(claimed):
                await session.rollback()
                return ClaimOutcome.rejected(RejectionReason.ALREADY_HANDLED)
            if await assignments.get_open_for_customer(claimed.customer_id) is not None:
                await session.rollback()
                return ClaimOutcome.rejected(RejectionReason.ALREADY_HANDLED)

            reserved = await operators.reserve_slot(operator_id)
            if reserved is None:
                await session.rollback()
                return ClaimOutcome.rejected(RejectionReason.CAPACITY_EXCEEDED)

            try:
                row = await assignments.create(
                    request=claimed,
                    operator=reserved,
                    status=AssignmentLifecycle.transition(
                        AssignmentStatus.PENDING, AssignmentAction.ACTIVATE
                    ),
                    now=now,
                )
                assignment = to_chat_assignment(row)
                await session.commit()
            except IntegrityError:
                # A concurrent claim opened an assignment for the same customer.
                await session.rollback()
                return ClaimOutcome.rejected(RejectionReason.ALREADY_HANDLED)

        self._notify(CHAT_REQUESTS_PATH, CHAT_ASSIGNMENTS_PATH, OPERATORS_PATH)
        return ClaimOutcome(assignment=assignment)

    async def complete_assignment(
        self,
        assignment_id: str,
        ended_by: EndedBy,
        now: datetime,
    ) -> CompletionOutcome:
        async with self._session("complete_assignment") as session:
            assignments = ChatAssignmentRepository(session)
            existing = await assignments.get_by_id(assignment_id)
            if existing is None:
                raise AssignmentNotFoundError(assignment_id)
            if not AssignmentLifecycle.is_open(existing.status):
                return CompletionOutcome(assignment=to_chat_assignment(existing), changed=False)

            row = await assignments.complete(
                assignment_id,
                status=AssignmentLifecycle.transition(
                    existing.status, AssignmentAction.COMPLETE
                ),
                ended_by=ended_by,
                now=now,
            )
            if row is None:
                # Lost the race to a concurrent end; report the committed state.
                await session.rollback()
                current = await assignments.get_by_id(assignment_id)
                return CompletionOutcome(assignment=to_chat_assignment(current), changed=False)

            await OperatorRepository(session).adjust_load(row.operator_id, -1)
            assignment = to_chat_assignment(row)
            await session.commit()

        self._notify(CHAT_ASSIGNMENTS_PATH, OPERATORS_PATH)
        return CompletionOutcome(assignment=assignment, changed=True)

    def _notify(self, *paths: str) -> None:
        if self._changes is not None:
            self._changes.notify(*paths)
