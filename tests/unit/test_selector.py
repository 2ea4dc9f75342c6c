from datetime import UTC, datetime

from app.domain.records import OperatorStatus
from app.services.selector import select_operator


def _operator(
    operator_id: str,
    active_chats: int,
    max_chats: int,
    is_online: bool = True,
    is_available: bool = True,
) -> OperatorStatus:
    return OperatorStatus(
        id=operator_id,
        name=operator_id.upper(),
        is_online=is_online,
        is_available=is_available,
        active_chats=active_chats,
        max_chats=max_chats,
        last_seen=datetime(2026, 1, 1, tzinfo=UTC),
    )


def test_least_loaded_operator_wins() -> None:
    operators = [
        _operator("a", active_chats=1, max_chats=5),
        _operator("b", active_chats=3, max_chats=5),
        _operator("c", active_chats=0, max_chats=5, is_online=False),
    ]

    assert select_operator(operators) == "a"


def test_unavailable_and_full_operators_are_skipped() -> None:
    operators = [
        _operator("busy", active_chats=0, max_chats=3, is_available=False),
        _operator("full", active_chats=2, max_chats=2),
        _operator("free", active_chats=2, max_chats=4),
    ]

    assert select_operator(operators) == "free"


def test_tie_goes_to_first_operator() -> None:
    operators = [
        _operator("first", active_chats=1, max_chats=3),
        _operator("second", active_chats=1, max_chats=3),
    ]

    assert select_operator(operators) == "first"


def test_no_assignable_operator_returns_none() -> None:
    operators = [
        _operator("offline", active_chats=0, max_chats=3, is_online=False),
        _operator("full", active_chats=3, max_chats=3),
    ]

    assert select_operator(operators) is None
    assert select_operator([]) is None
