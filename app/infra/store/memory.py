import asyncio
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from app.domain.enums import (
    AssignmentAction,
    AssignmentStatus,
    ChatRequestStatus,
    EndedBy,
    RejectionReason,
    RequestAction,
)
from app.domain.records import (
    ChatAssignment,
    ChatRequest,
    OperatorStatus,
    is_assignable,
    latest_request_per_customer,
)
from app.domain.state_machine import AssignmentLifecycle, RequestLifecycle
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
)


class InMemoryChatStore:
    """Single-process store; one lock serializes every read and write."""

    def __init__(self, changes: ChangeNotifier | None = None) -> None:
        self._operators: dict[str, OperatorStatus] = {}
        self._requests: dict[str, ChatRequest] = {}
        self._assignments: dict[str, ChatAssignment] = {}
        self._changes = changes
        self._lock = asyncio.Lock()

    async def ping(self) -> None:
        return None

    async def get_operator(self, operator_id: str) -> OperatorStatus | None:
        async with self._lock:
            return self._operators.get(operator_id)

    async def list_operators(self) -> list[OperatorStatus]:
        async with self._lock:
            return list(self._operators.values())

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
        async with self._lock:
            current = self._operators.get(operator_id)
            if current is None:
                current = OperatorStatus(
                    id=operator_id,
                    name=operator_id,
                    is_online=False,
                    is_available=False,
                    active_chats=0,
                    max_chats=default_max_chats,
                    last_seen=now,
                )
            updated = replace(
                current,
                name=name if name is not None else current.name,
                is_online=is_online if is_online is not None else current.is_online,
                is_available=(
                    is_available if is_available is not None else current.is_available
                ),
                max_chats=max_chats if max_chats is not None else current.max_chats,
                last_seen=now,
            )
            self._operators[operator_id] = updated
        self._notify(OPERATORS_PATH)
        return updated

    async def adjust_load(self, operator_id: str, delta: int) -> OperatorStatus | None:
        async with self._lock:
            operator = self._adjust_load_locked(operator_id, delta)
        if operator is not None:
            self._notify(OPERATORS_PATH)
        return operator

    async def set_all_offline(self) -> int:
        async with self._lock:
            changed = 0
            for operator_id, operator in self._operators.items():
                if operator.is_online:
                    self._operators[operator_id] = replace(operator, is_online=False)
                    changed += 1
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
        request = ChatRequest(
            id=uuid4().hex,
            customer_id=customer_id,
            customer_name=customer_name,
            message=message,
            status=ChatRequestStatus.WAITING,
            created_at=now,
        )
        async with self._lock:
            self._requests[request.id] = request
        self._notify(CHAT_REQUESTS_PATH)
        return request

    async def get_request(self, request_id: str) -> ChatRequest | None:
        async with self._lock:
            return self._requests.get(request_id)

    async def latest_request_for_customer(self, customer_id: str) -> ChatRequest | None:
        async with self._lock:
            return latest_request_per_customer(list(self._requests.values())).get(
                customer_id
            )

    async def list_pending_requests(self) -> list[ChatRequest]:
        async with self._lock:
            latest = latest_request_per_customer(list(self._requests.values()))
        pending = [
            request
            for request in latest.values()
            if request.status == ChatRequestStatus.WAITING
        ]
        return sorted(pending, key=lambda request: (request.created_at, request.id), reverse=True)

    async def list_waiting_created_before(self, cutoff: datetime) -> list[ChatRequest]:
        async with self._lock:
            return [
                request
                for request in self._requests.values()
                if request.status == ChatRequestStatus.WAITING and request.created_at < cutoff
            ]

    async def mark_request_terminal(
        self,
        request_id: str,
        status: ChatRequestStatus,
        operator_id: str | None,
        now: datetime,
    ) -> ChatRequest | None:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or RequestLifecycle.is_terminal(request.status):
                return None
            updated = self._apply_terminal(
                request, RequestLifecycle.action_for(status), operator_id, now
            )
        self._notify(CHAT_REQUESTS_PATH)
        return updated

    async def get_assignment(self, assignment_id: str) -> ChatAssignment | None:
        async with self._lock:
            return self._assignments.get(assignment_id)

    async def get_open_assignment_for_customer(
        self, customer_id: str
    ) -> ChatAssignment | None:
        async with self._lock:
            return self._open_assignment_locked(customer_id)

    async def latest_assignment_between(
        self, customer_id: str, operator_id: str
    ) -> ChatAssignment | None:
        async with self._lock:
            matches = [
                assignment
                for assignment in self._assignments.values()
                if assignment.customer_id == customer_id
                and assignment.operator_id == operator_id
            ]
        if not matches:
            return None
        return max(
            matches,
            key=lambda assignment: (
                AssignmentLifecycle.is_open(assignment.status),
                assignment.created_at,
            ),
        )

    async def list_assignments(
        self,
        operator_id: str | None = None,
        statuses: Sequence[AssignmentStatus] | None = None,
    ) -> list[ChatAssignment]:
        async with self._lock:
            assignments = list(self._assignments.values())
        if operator_id is not None:
            assignments = [a for a in assignments if a.operator_id == operator_id]
        if statuses is not None:
            assignments = [a for a in assignments if a.status in statuses]
        return assignments

    async def record_activity(
        self, assignment_id: str, at: datetime
    ) -> ChatAssignment | None:
        async with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None or not AssignmentLifecycle.is_open(assignment.status):
                return assignment
            updated = replace(assignment, last_message_at=at)
            self._assignments[assignment_id] = updated
        self._notify(CHAT_ASSIGNMENTS_PATH)
        return updated

    async def claim(self, request_id: str, operator_id: str, now: datetime) -> ClaimOutcome:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise ChatRequestNotFoundError(request_id)
            operator = self._operators.get(operator_id)
            if operator is None:
                raise OperatorNotFoundError(operator_id)

            if RequestLifecycle.is_terminal(request.status):
                return ClaimOutcome.rejected(RejectionReason.ALREADY_HANDLED)
            latest = latest_request_per_customer(list(self._requests.values()))
            if latest[request.customer_id].id != request.id:
                return ClaimOutcome.rejected(RejectionReason.ALREADY_HANDLED)
            if self._open_assignment_locked(request.customer_id) is not None:
                return ClaimOutcome.rejected(RejectionReason.ALREADY_HANDLED)
            if not is_assignable(operator):
                return ClaimOutcome.rejected(RejectionReason.CAPACITY_EXCEEDED)

            self._apply_terminal(request, RequestAction.CLAIM, operator_id, now)
            self._adjust_load_locked(operator_id, 1)
            assignment = ChatAssignment(
                id=uuid4().hex,
                request_id=request.id,
                customer_id=request.customer_id,
                customer_name=request.customer_name,
                operator_id=operator.id,
                operator_name=operator.name,
                status=AssignmentLifecycle.transition(
                    AssignmentStatus.PENDING, AssignmentAction.ACTIVATE
                ),
                created_at=now,
                accepted_at=now,
            )
            self._assignments[assignment.id] = assignment
        self._notify(CHAT_REQUESTS_PATH, CHAT_ASSIGNMENTS_PATH, OPERATORS_PATH)
        return ClaimOutcome(assignment=assignment)

    async def complete_assignment(
        self,
        assignment_id: str,
        ended_by: EndedBy,
        now: datetime,
    ) -> CompletionOutcome:
        async with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                raise AssignmentNotFoundError(assignment_id)
            if not AssignmentLifecycle.is_open(assignment.status):
                return CompletionOutcome(assignment=assignment, changed=False)

            completed = replace(
                assignment,
                status=AssignmentLifecycle.transition(
                    assignment.status, AssignmentAction.COMPLETE
                ),
                completed_at=now,
                ended_by=ended_by,
            )
            self._assignments[assignment_id] = completed
            self._adjust_load_locked(completed.operator_id, -1)
        self._notify(CHAT_ASSIGNMENTS_PATH, OPERATORS_PATH)
        return CompletionOutcome(assignment=completed, changed=True)

    def _adjust_load_locked(self, operator_id: str, delta: int) -> OperatorStatus | None:
        operator = self._operators.get(operator_id)
        if operator is None:
            return None
        updated = replace(operator, active_chats=max(0, operator.active_chats + delta))
        self._operators[operator_id] = updated
        return updated

    def _apply_terminal(
        self,
        request: ChatRequest,
        action: RequestAction,
        operator_id: str | None,
        now: datetime,
    ) -> ChatRequest:
        status = RequestLifecycle.transition(request.status, action)
        updated = replace(
            request,
            status=status,
            assigned_operator_id=(
                operator_id if status == ChatRequestStatus.ASSIGNED else None
            ),
            assigned_at=now if status == ChatRequestStatus.ASSIGNED else None,
        )
        self._requests[request.id] = updated
        return updated

    def _open_assignment_locked(self, customer_id: str) -> ChatAssignment | None:
        for assignment in self._assignments.values():
            if assignment.customer_id == customer_id and AssignmentLifecycle.is_open(
                assignment.status
            ):
                return assignment
        return None

    def _notify(self, *paths: str) -> None:
        if self._changes is not None:
            self._changes.notify(*paths)
