from dataclasses import dataclass
from datetime import datetime

from app.domain.enums import AssignmentStatus, ChatRequestStatus, EndedBy


@dataclass(frozen=True, slots=True)
class OperatorStatus:
    id: str
    name: str
    is_online: bool
    is_available: bool
    active_chats: int
    max_chats: int
    last_seen: datetime


@dataclass(frozen=True, slots=True)
class ChatRequest:
    id: str
    customer_id: str
    customer_name: str
    message: str
    status: ChatRequestStatus
    created_at: datetime
    assigned_operator_id: str | None = None
    assigned_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ChatAssignment:
    id: str
    request_id: str
    customer_id: str
    customer_name: str
    operator_id: str
    operator_name: str
    status: AssignmentStatus
    created_at: datetime
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    last_message_at: datetime | None = None
    ended_by: EndedBy | None = None

    @property
    def last_activity_at(self) -> datetime:
        return self.last_message_at or self.created_at


def is_assignable(operator: OperatorStatus) -> bool:
    return (
        operator.is_online
        and operator.is_available
        and operator.active_chats < operator.max_chats
    )


def latest_request_per_customer(requests: list[ChatRequest]) -> dict[str, ChatRequest]:
    """Newest request of every customer; older ones count as superseded."""
    latest: dict[str, ChatRequest] = {}
    for request in requests:
        current = latest.get(request.customer_id)
        if current is None or (request.created_at, request.id) > (current.created_at, current.id):
            latest[request.customer_id] = request
    return latest
