from enum import Enum


class ChatRequestStatus(str, Enum):
    WAITING = "waiting"
    ASSIGNED = "assigned"
    REJECTED = "rejected"


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class RequestAction(str, Enum):
    CLAIM = "claim"
    DECLINE = "decline"


class AssignmentAction(str, Enum):
    ACTIVATE = "activate"
    COMPLETE = "complete"


class EndedBy(str, Enum):
    CUSTOMER = "customer"
    OPERATOR = "operator"
    SYSTEM = "system"


class RejectionReason(str, Enum):
    ALREADY_HANDLED = "already_handled"
    CAPACITY_EXCEEDED = "capacity_exceeded"


class NotificationKind(str, Enum):
    CHAT_ASSIGNED = "chat.assigned"
    CHAT_ENDED = "chat.ended"
    REQUEST_EXPIRED = "request.expired"
