from app.domain.enums import (
    AssignmentAction,
    AssignmentStatus,
    ChatRequestStatus,
    RequestAction,
)


class InvalidRequestTransition(ValueError):
    def __init__(self, current: ChatRequestStatus, action: RequestAction) -> None:
        super().__init__(
            f"Cannot apply action '{action.value}' to a request in state '{current.value}'."
        )
        self.current = current
        self.action = action


class InvalidAssignmentTransition(ValueError):
    def __init__(self, current: AssignmentStatus, action: AssignmentAction) -> None:
        super().__init__(
            f"Cannot apply action '{action.value}' to an assignment in state '{current.value}'."
        )
        self.current = current
        self.action = action
