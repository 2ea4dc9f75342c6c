from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from app.domain.enums import AssignmentStatus, ChatRequestStatus, EndedBy, RejectionReason
from app.domain.records import ChatAssignment, ChatRequest, OperatorStatus

OPERATORS_PATH = "operators"
CHAT_REQUESTS_PATH = "chat_requests"
CHAT_ASSIGNMENTS_PATH = "chat_assignments"


@dataclass(frozen=True, slots=True)
class ClaimOutcome:
    assignment: ChatAssignment | None = None
    rejection: RejectionReason | None = None

    @classmethod
    def rejected(cls, reason: RejectionReason) -> "ClaimOutcome":
        return cls(rejection=reason)


@dataclass(frozen=True, slots=True)
class CompletionOutcome:
    assignment: ChatAssignment
    changed: bool


class ChangeNotifier(Protocol):
    def notify(self, *paths: str) -> None: ...


class ChatStore(Protocol):
    """Shared state store behind the routing engine.

    ``claim`` and ``complete_assignment`` are single atomic commits: each either
    applies every write it implies or none of them. ``adjust_load`` never loses
    concurrent updates. Every committed write notifies the paths it touched.
    Connectivity failures surface as ``StoreUnavailableError``.
    """

    async def ping(self) -> None: ...

    async def get_operator(self, operator_id: str) -> OperatorStatus | None: ...

    async def list_operators(self) -> list[OperatorStatus]: ...

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
    ) -> OperatorStatus: ...

    async def adjust_load(self, operator_id: str, delta: int) -> OperatorStatus | None: ...

    async def set_all_offline(self) -> int: ...

    async def create_request(
        self,
        customer_id: str,
        customer_name: str,
        message: str,
        now: datetime,
    ) -> ChatRequest: ...

    async def get_request(self, request_id: str) -> ChatRequest | None: ...

    async def latest_request_for_customer(self, customer_id: str) -> ChatRequest | None: ...

    async def list_pending_requests(self) -> list[ChatRequest]: ...

    async def list_waiting_created_before(self, cutoff: datetime) -> list[ChatRequest]: ...

    async def mark_request_terminal(
        self,
        request_id: str,
        status: ChatRequestStatus,
        operator_id: str | None,
        now: datetime,
    ) -> ChatRequest | None: ...

    async def get_assignment(self, assignment_id: str) -> ChatAssignment | None: ...

    async def get_open_assignment_for_customer(
        self, customer_id: str
    ) -> ChatAssignment | None: ...

    async def latest_assignment_between(
        self, customer_id: str, operator_id: str
    ) -> ChatAssignment | None: ...

    async def list_assignments(
        self,
        operator_id: str | None = None,
        statuses: Sequence[AssignmentStatus] | None = None,
    ) -> list[ChatAssignment]: ...

    async def record_activity(
        self, assignment_id: str, at: datetime
    ) -> ChatAssignment | None: ...

    async def claim(self, request_id: str, operator_id: str, now: datetime) -> ClaimOutcome: ...

    async def complete_assignment(
        self,
        assignment_id: str,
        ended_by: EndedBy,
        now: datetime,
    ) -> CompletionOutcome: ...
