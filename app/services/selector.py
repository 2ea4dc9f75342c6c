from collections.abc import Iterable

from app.domain.records import OperatorStatus, is_assignable


def select_operator(operators: Iterable[OperatorStatus]) -> str | None:
    """Least-loaded assignable operator; ties go to the first one in ``operators``."""
    best: OperatorStatus | None = None
    for operator in operators:
        if not is_assignable(operator):
            continue
        if best is None or operator.active_chats < best.active_chats:
            best = operator
    return best.id if best is not None else None
