from app.domain.enums import (
    AssignmentAction,
    AssignmentStatus,
    ChatRequestStatus,
    RequestAction,
)
from app.domain.exceptions import InvalidAssignmentTransition, InvalidRequestTransition


class RequestLifecycle:
    """State machine for chat requests: waiting -> assigned | rejected."""

    _allowed_transitions: dict[tuple[ChatRequestStatus, RequestAction], ChatRequestStatus] = {
        (ChatRequestStatus.WAITING, RequestAction.CLAIM): ChatRequestStatus.ASSIGNED,
        (ChatRequestStatus.WAITING, RequestAction.DECLINE): ChatRequestStatus.REJECTED,
    }

    @classmethod
    def transition(cls, current: ChatRequestStatus, action: RequestAction) -> ChatRequestStatus:
        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidRequestTransition(current=current, action=action)
        return next_state

    @staticmethod
    def is_terminal(status: ChatRequestStatus) -> bool:
        return status != ChatRequestStatus.WAITING

    @staticmethod
    def action_for(status: ChatRequestStatus) -> RequestAction:
        if status == ChatRequestStatus.ASSIGNED:
            return RequestAction.CLAIM
        if status == ChatRequestStatus.REJECTED:
            return RequestAction.DECLINE
        raise ValueError(f"'{status.value}' is not a terminal request status.")


class AssignmentLifecycle:
    """State machine for assignments: pending -> active -> completed."""

    _allowed_transitions: dict[tuple[AssignmentStatus, AssignmentAction], AssignmentStatus] = {
        (AssignmentStatus.PENDING, AssignmentAction.ACTIVATE): AssignmentStatus.ACTIVE,
        (AssignmentStatus.PENDING, AssignmentAction.COMPLETE): AssignmentStatus.COMPLETED,
        (AssignmentStatus.ACTIVE, AssignmentAction.COMPLETE): AssignmentStatus.COMPLETED,
    }

    @classmethod
    def transition(cls, current: AssignmentStatus, action: AssignmentAction) -> AssignmentStatus:
        # Idempotent semantics for repeated end-chat clicks from either side.
        if current == AssignmentStatus.COMPLETED and action == AssignmentAction.COMPLETE:
            return AssignmentStatus.COMPLETED
        if current == AssignmentStatus.ACTIVE and action == AssignmentAction.ACTIVATE:
            return AssignmentStatus.ACTIVE

        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidAssignmentTransition(current=current, action=action)
        return next_state

    @staticmethod
    def is_open(status: AssignmentStatus) -> bool:
        return status in (AssignmentStatus.PENDING, AssignmentStatus.ACTIVE)
