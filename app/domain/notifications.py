"""Outbound notices handed to the chat transport collaborator.

Each notice kind is its own dataclass with a fixed payload; ``Notice`` is the
closed union of all of them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.domain.enums import EndedBy, NotificationKind


@dataclass(frozen=True, slots=True)
class ChatAssignedNotice:
    assignment_id: str
    customer_id: str
    operator_id: str
    operator_name: str
    accepted_at: datetime
    kind: NotificationKind = field(default=NotificationKind.CHAT_ASSIGNED, init=False)


@dataclass(frozen=True, slots=True)
class ChatEndedNotice:
    assignment_id: str
    customer_id: str
    operator_id: str
    ended_by: EndedBy
    completed_at: datetime
    kind: NotificationKind = field(default=NotificationKind.CHAT_ENDED, init=False)


@dataclass(frozen=True, slots=True)
class RequestExpiredNotice:
    request_id: str
    customer_id: str
    created_at: datetime
    kind: NotificationKind = field(default=NotificationKind.REQUEST_EXPIRED, init=False)


Notice = ChatAssignedNotice | ChatEndedNotice | RequestExpiredNotice


def notice_payload(notice: Notice) -> dict[str, Any]:
    if isinstance(notice, ChatAssignedNotice):
        return {
            "assignment_id": notice.assignment_id,
            "customer_id": notice.customer_id,
            "operator_id": notice.operator_id,
            "operator_name": notice.operator_name,
            "accepted_at": notice.accepted_at.isoformat(),
        }
    if isinstance(notice, ChatEndedNotice):
        return {
            "assignment_id": notice.assignment_id,
            "customer_id": notice.customer_id,
            "operator_id": notice.operator_id,
            "ended_by": notice.ended_by.value,
            "completed_at": notice.completed_at.isoformat(),
        }
    if isinstance(notice, RequestExpiredNotice):
        return {
            "request_id": notice.request_id,
            "customer_id": notice.customer_id,
            "created_at": notice.created_at.isoformat(),
        }
    raise TypeError(f"Unsupported notice type: {type(notice).__name__}")
