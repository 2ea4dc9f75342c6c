class OperatorNotFoundError(LookupError):
    def __init__(self, operator_id: str) -> None:
        super().__init__(f"Operator '{operator_id}' not found")
        self.operator_id = operator_id


class ChatRequestNotFoundError(LookupError):
    def __init__(self, request_id: str) -> None:
        super().__init__(f"Chat request '{request_id}' not found")
        self.request_id = request_id


class NoWaitingRequestError(LookupError):
    def __init__(self, customer_id: str) -> None:
        super().__init__(f"Customer '{customer_id}' has no waiting chat request")
        self.customer_id = customer_id


class AssignmentNotFoundError(LookupError):
    def __init__(self, assignment_id: str) -> None:
        super().__init__(f"Chat assignment '{assignment_id}' not found")
        self.assignment_id = assignment_id


class NoAssignmentBetweenError(LookupError):
    def __init__(self, customer_id: str, operator_id: str) -> None:
        super().__init__(
            f"No chat assignment between customer '{customer_id}' "
            f"and operator '{operator_id}'"
        )
        self.customer_id = customer_id
        self.operator_id = operator_id


class StoreUnavailableError(RuntimeError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"Shared state store unavailable during '{operation}'")
        self.operation = operation
