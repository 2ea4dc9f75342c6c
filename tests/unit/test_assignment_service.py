import asyncio
from datetime import timedelta

import pytest

from app.domain.enums import (
    AssignmentStatus,
    ChatRequestStatus,
    EndedBy,
    NotificationKind,
    RejectionReason,
)
from app.domain.notifications import (
    ChatAssignedNotice,
    ChatEndedNotice,
    Notice,
    RequestExpiredNotice,
)
from app.domain.records import ChatAssignment
from app.services.assignment_service import AssignmentLifecycleManager, ClaimRejected
from app.services.errors import (
    AssignmentNotFoundError,
    ChatRequestNotFoundError,
    NoAssignmentBetweenError,
    NoWaitingRequestError,
    OperatorNotFoundError,
)


async def _assert_load_matches_active_assignments(engine) -> None:
    assignments = await engine.store.list_assignments()
    for operator in await engine.registry.snapshot():
        active = [
            assignment
            for assignment in assignments
            if assignment.operator_id == operator.id
            and assignment.status == AssignmentStatus.ACTIVE
        ]
        assert operator.active_chats == len(active), operator.id


@pytest.mark.asyncio
async def test_auto_assign_picks_operator_with_free_capacity(engine, bring_online, transport) -> None:
    await bring_online("op1", max_chats=2)
    await bring_online("op2", max_chats=2, active_chats=2)

    request = await engine.lifecycle.request_chat("c1", "Customer One", "Where is my order?")
    assignment = await engine.lifecycle.auto_assign("c1")

    assert assignment is not None
    assert assignment.operator_id == "op1"
    assert assignment.status == AssignmentStatus.ACTIVE
    assert assignment.request_id == request.id
    assert (await engine.registry.get("op1")).active_chats == 1
    assert (await engine.registry.get("op2")).active_chats == 2

    claimed = await engine.queue.get(request.id)
    assert claimed.status == ChatRequestStatus.ASSIGNED
    assert claimed.assigned_operator_id == "op1"

    assert len(transport.notices) == 1
    notice = transport.notices[0]
    assert isinstance(notice, ChatAssignedNotice)
    assert notice.kind == NotificationKind.CHAT_ASSIGNED
    assert notice.customer_id == "c1"
    assert notice.operator_name == "OP1"


@pytest.mark.asyncio
async def test_simultaneous_claims_have_exactly_one_winner(engine, bring_online) -> None:
    await bring_online("op1")
    await bring_online("op2")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    results = await asyncio.gather(
        engine.lifecycle.claim(request.id, "op1"),
        engine.lifecycle.claim(request.id, "op2"),
    )

    winners = [result for result in results if isinstance(result, ChatAssignment)]
    losers = [result for result in results if isinstance(result, ClaimRejected)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].reason == RejectionReason.ALREADY_HANDLED

    claimed = await engine.queue.get(request.id)
    assert claimed.assigned_operator_id == winners[0].operator_id
    assert len(await engine.store.list_assignments()) == 1
    await _assert_load_matches_active_assignments(engine)


@pytest.mark.asyncio
async def test_many_claimants_on_one_request(engine, bring_online) -> None:
    operator_ids = [f"op{index}" for index in range(10)]
    for operator_id in operator_ids:
        await bring_online(operator_id)
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    results = await asyncio.gather(
        *(engine.lifecycle.claim(request.id, operator_id) for operator_id in operator_ids)
    )

    winners = [result for result in results if isinstance(result, ChatAssignment)]
    rejections = [result.reason for result in results if isinstance(result, ClaimRejected)]
    assert len(winners) == 1
    assert rejections == [RejectionReason.ALREADY_HANDLED] * 9
    await _assert_load_matches_active_assignments(engine)


@pytest.mark.asyncio
async def test_claim_rejects_operator_at_capacity(engine, bring_online) -> None:
    await bring_online("op1", max_chats=1)
    first = await engine.lifecycle.request_chat("c1", "Customer One", "hello")
    second = await engine.lifecycle.request_chat("c2", "Customer Two", "hello")

    assert isinstance(await engine.lifecycle.claim(first.id, "op1"), ChatAssignment)
    rejected = await engine.lifecycle.claim(second.id, "op1")

    assert isinstance(rejected, ClaimRejected)
    assert rejected.reason == RejectionReason.CAPACITY_EXCEEDED
    assert "op1" in rejected.detail
    assert (await engine.queue.get(second.id)).status == ChatRequestStatus.WAITING
    assert (await engine.registry.get("op1")).active_chats == 1


@pytest.mark.asyncio
async def test_claim_rejects_offline_operator(engine, bring_online) -> None:
    await bring_online("op1")
    await engine.registry.go_offline("op1")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    rejected = await engine.lifecycle.claim(request.id, "op1")

    assert isinstance(rejected, ClaimRejected)
    assert rejected.reason == RejectionReason.CAPACITY_EXCEEDED


@pytest.mark.asyncio
async def test_concurrent_claims_never_exceed_capacity(engine, bring_online) -> None:
    await bring_online("op1", max_chats=2)
    requests = [
        await engine.lifecycle.request_chat(f"c{index}", f"Customer {index}", "hello")
        for index in range(5)
    ]

    results = await asyncio.gather(
        *(engine.lifecycle.claim(request.id, "op1") for request in requests)
    )

    winners = [result for result in results if isinstance(result, ChatAssignment)]
    rejections = [result.reason for result in results if isinstance(result, ClaimRejected)]
    assert len(winners) == 2
    assert rejections == [RejectionReason.CAPACITY_EXCEEDED] * 3
    assert (await engine.registry.get("op1")).active_chats == 2


@pytest.mark.asyncio
async def test_load_is_conserved_across_concurrent_assign_and_end(engine, bring_online) -> None:
    await bring_online("op1")
    await bring_online("op2")
    customers = [f"c{index}" for index in range(5)]
    for customer_id in customers:
        await engine.lifecycle.request_chat(customer_id, customer_id.upper(), "hello")

    assignments = await asyncio.gather(
        *(engine.lifecycle.auto_assign(customer_id) for customer_id in customers)
    )

    assert all(assignment is not None for assignment in assignments)
    assert {assignment.customer_id for assignment in assignments} == set(customers)
    await _assert_load_matches_active_assignments(engine)

    await asyncio.gather(
        engine.lifecycle.end_chat(assignments[0].id),
        engine.lifecycle.end_chat(assignments[1].id, EndedBy.CUSTOMER),
        engine.lifecycle.end_chat(assignments[1].id),
    )
    await _assert_load_matches_active_assignments(engine)
    total = sum(operator.active_chats for operator in await engine.registry.snapshot())
    assert total == 3


@pytest.mark.asyncio
async def test_end_chat_twice_releases_load_once(engine, bring_online, transport) -> None:
    await bring_online("op1")
    first = await engine.lifecycle.request_chat("c1", "Customer One", "hello")
    second = await engine.lifecycle.request_chat("c2", "Customer Two", "hello")
    assignment = await engine.lifecycle.claim(first.id, "op1")
    await engine.lifecycle.claim(second.id, "op1")

    ended = await engine.lifecycle.end_chat(assignment.id, EndedBy.OPERATOR)
    ended_again = await engine.lifecycle.end_chat(assignment.id, EndedBy.CUSTOMER)

    assert ended.status == AssignmentStatus.COMPLETED
    assert ended_again.status == AssignmentStatus.COMPLETED
    assert ended_again.ended_by == EndedBy.OPERATOR
    assert ended_again.completed_at == ended.completed_at
    assert (await engine.registry.get("op1")).active_chats == 1

    ended_notices = [notice for notice in transport.notices if isinstance(notice, ChatEndedNotice)]
    assert len(ended_notices) == 1
    assert ended_notices[0].ended_by == EndedBy.OPERATOR


@pytest.mark.asyncio
async def test_operator_load_never_goes_negative(engine, bring_online) -> None:
    await bring_online("op1")

    operator = await engine.registry.adjust_load("op1", -1)

    assert operator.active_chats == 0


@pytest.mark.asyncio
async def test_newer_request_supersedes_older_waiting_one(engine, bring_online) -> None:
    await bring_online("op1")
    await bring_online("op2")
    older = await engine.lifecycle.request_chat("c1", "Customer One", "first try")
    newer = await engine.lifecycle.request_chat("c1", "Customer One", "second try")

    pending = await engine.queue.pending()
    assert [request.id for request in pending] == [newer.id]

    results = await asyncio.gather(
        engine.lifecycle.claim(older.id, "op1"),
        engine.lifecycle.claim(newer.id, "op2"),
    )

    assert isinstance(results[0], ClaimRejected)
    assert results[0].reason == RejectionReason.ALREADY_HANDLED
    assert isinstance(results[1], ChatAssignment)
    assert results[1].operator_id == "op2"


@pytest.mark.asyncio
async def test_customer_never_holds_two_open_assignments(engine, bring_online) -> None:
    await bring_online("op1")
    await bring_online("op2")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")
    assignment = await engine.lifecycle.claim(request.id, "op1")

    repeated = await engine.lifecycle.request_chat("c1", "Customer One", "are you there?")
    again = await engine.lifecycle.auto_assign("c1")

    assert repeated.id == request.id
    assert again is not None
    assert again.id == assignment.id
    open_assignments = [
        item
        for item in await engine.store.list_assignments()
        if item.customer_id == "c1" and item.status != AssignmentStatus.COMPLETED
    ]
    assert len(open_assignments) == 1


@pytest.mark.asyncio
async def test_pending_feed_is_newest_first(engine) -> None:
    first = await engine.lifecycle.request_chat("c1", "Customer One", "hello")
    second = await engine.lifecycle.request_chat("c2", "Customer Two", "hello")
    third = await engine.lifecycle.request_chat("c3", "Customer Three", "hello")

    pending = await engine.queue.pending()

    assert [request.id for request in pending] == [third.id, second.id, first.id]


@pytest.mark.asyncio
async def test_auto_assign_without_operators_leaves_request_waiting(engine) -> None:
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    assert await engine.lifecycle.auto_assign("c1") is None
    assert (await engine.queue.get(request.id)).status == ChatRequestStatus.WAITING


@pytest.mark.asyncio
async def test_auto_assign_requires_waiting_request(engine, bring_online) -> None:
    await bring_online("op1")

    with pytest.raises(NoWaitingRequestError):
        await engine.lifecycle.auto_assign("nobody")


@pytest.mark.asyncio
async def test_auto_assign_trims_customer_id(engine, bring_online) -> None:
    await bring_online("op1")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    assignment = await engine.lifecycle.auto_assign("  c1  ")

    assert assignment is not None
    assert assignment.request_id == request.id
    assert assignment.customer_id == "c1"


@pytest.mark.asyncio
async def test_unknown_request_or_operator_raises(engine, bring_online) -> None:
    await bring_online("op1")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    with pytest.raises(ChatRequestNotFoundError):
        await engine.lifecycle.claim("missing", "op1")
    with pytest.raises(OperatorNotFoundError):
        await engine.lifecycle.claim(request.id, "ghost")
    with pytest.raises(AssignmentNotFoundError):
        await engine.lifecycle.end_chat("missing")
    with pytest.raises(AssignmentNotFoundError):
        await engine.lifecycle.record_activity("missing")
    with pytest.raises(OperatorNotFoundError):
        await engine.lifecycle.get_active_assignments_for("ghost")


@pytest.mark.asyncio
async def test_declined_request_cannot_be_claimed(engine, bring_online) -> None:
    await bring_online("op1")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    declined = await engine.lifecycle.decline_request(request.id)
    declined_again = await engine.lifecycle.decline_request(request.id)
    claim = await engine.lifecycle.claim(request.id, "op1")

    assert declined.status == ChatRequestStatus.REJECTED
    assert declined_again is None
    assert isinstance(claim, ClaimRejected)
    assert claim.reason == RejectionReason.ALREADY_HANDLED
    assert await engine.queue.pending() == []


@pytest.mark.asyncio
async def test_end_chat_between_customer_and_operator(engine, bring_online) -> None:
    await bring_online("op1")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")
    await engine.lifecycle.claim(request.id, "op1")

    ended = await engine.lifecycle.end_chat_between("c1", "op1")

    assert ended.status == AssignmentStatus.COMPLETED
    assert ended.ended_by == EndedBy.CUSTOMER
    assert await engine.lifecycle.get_assignment_for_customer("c1") is None
    with pytest.raises(NoAssignmentBetweenError):
        await engine.lifecycle.end_chat_between("c1", "op2")


@pytest.mark.asyncio
async def test_active_assignments_sorted_by_last_activity(engine, bring_online, clock) -> None:
    await bring_online("op1", max_chats=5)
    assignments = []
    for customer_id in ("c1", "c2", "c3"):
        request = await engine.lifecycle.request_chat(customer_id, customer_id.upper(), "hi")
        assignments.append(await engine.lifecycle.claim(request.id, "op1"))

    clock.advance(timedelta(minutes=5))
    await engine.lifecycle.record_activity(assignments[0].id)

    ordered = await engine.lifecycle.get_active_assignments_for("op1")

    assert [item.customer_id for item in ordered] == ["c1", "c3", "c2"]
    assert ordered[0].last_message_at is not None


@pytest.mark.asyncio
async def test_stale_waiting_requests_expire(engine, clock, transport) -> None:
    stale = await engine.lifecycle.request_chat("c1", "Customer One", "hello")
    clock.advance(timedelta(minutes=16))
    fresh = await engine.lifecycle.request_chat("c2", "Customer Two", "hello")

    expired = await engine.lifecycle.expire_stale_requests()

    assert [request.id for request in expired] == [stale.id]
    assert (await engine.queue.get(stale.id)).status == ChatRequestStatus.REJECTED
    assert (await engine.queue.get(fresh.id)).status == ChatRequestStatus.WAITING
    assert [notice.kind for notice in transport.notices] == [NotificationKind.REQUEST_EXPIRED]


@pytest.mark.asyncio
async def test_expiry_announces_only_the_latest_request(engine, bring_online, clock, transport) -> None:
    await bring_online("op1")
    older = await engine.lifecycle.request_chat("c1", "Customer One", "first")
    newer = await engine.lifecycle.request_chat("c1", "Customer One", "second")
    superseded = await engine.lifecycle.request_chat("c2", "Customer Two", "first")
    current = await engine.lifecycle.request_chat("c2", "Customer Two", "second")
    assert isinstance(await engine.lifecycle.claim(current.id, "op1"), ChatAssignment)
    clock.advance(timedelta(minutes=16))

    expired = await engine.lifecycle.expire_stale_requests()

    assert {request.id for request in expired} == {older.id, newer.id, superseded.id}
    for request in expired:
        assert (await engine.queue.get(request.id)).status == ChatRequestStatus.REJECTED
    expiry_notices = [
        notice for notice in transport.notices if isinstance(notice, RequestExpiredNotice)
    ]
    assert [(notice.customer_id, notice.request_id) for notice in expiry_notices] == [
        ("c1", newer.id)
    ]


@pytest.mark.asyncio
async def test_customer_state_reports_assigned_operator(engine, bring_online) -> None:
    await bring_online("op1")
    request = await engine.lifecycle.request_chat("c1", "Customer One", "hello")

    before = await engine.lifecycle.customer_state("c1")
    assert before.request.id == request.id
    assert before.assignment is None
    assert await engine.lifecycle.get_assigned_operator("c1") is None

    await engine.lifecycle.auto_assign("c1")
    after = await engine.lifecycle.customer_state("c1")
    operator = await engine.lifecycle.get_assigned_operator("c1")

    assert after.request.status == ChatRequestStatus.ASSIGNED
    assert after.assignment.operator_id == "op1"
    assert operator.id == "op1"


class FailingChatTransport:
    async def deliver(self, notice: Notice) -> None:
        raise ConnectionError(f"cannot deliver {notice.kind.value}")


@pytest.mark.asyncio
async def test_transport_failure_keeps_committed_claim(engine, bring_online) -> None:
    await bring_online("op1")
    lifecycle = AssignmentLifecycleManager(
        engine.store,
        engine.registry,
        engine.queue,
        engine.changes,
        transport=FailingChatTransport(),
    )
    request = await lifecycle.request_chat("c1", "Customer One", "hello")

    assignment = await lifecycle.claim(request.id, "op1")

    assert isinstance(assignment, ChatAssignment)
    assert (await engine.queue.get(request.id)).status == ChatRequestStatus.ASSIGNED
