import pytest

from app.domain.enums import ChatRequestStatus
from app.services.errors import ChatRequestNotFoundError, OperatorNotFoundError


@pytest.mark.asyncio
async def test_set_status_registers_operator_with_default_capacity(engine) -> None:
    operator = await engine.registry.set_status("  op1  ", is_online=True)

    assert operator.id == "op1"
    assert operator.name == "op1"
    assert operator.is_online is True
    assert operator.is_available is False
    assert operator.active_chats == 0
    assert operator.max_chats == 3


@pytest.mark.asyncio
async def test_set_status_only_changes_given_fields(engine, bring_online) -> None:
    await bring_online("op1", max_chats=4, active_chats=2)

    operator = await engine.registry.set_status("op1", is_available=False)

    assert operator.is_online is True
    assert operator.is_available is False
    assert operator.max_chats == 4
    assert operator.active_chats == 2
    assert not await engine.registry.is_operator_available("op1")
    assert not engine.registry.is_assignable(operator)


@pytest.mark.asyncio
async def test_set_status_rejects_invalid_input(engine) -> None:
    with pytest.raises(ValueError):
        await engine.registry.set_status("   ", is_online=True)
    with pytest.raises(ValueError):
        await engine.registry.set_status("op1", max_chats=0)


@pytest.mark.asyncio
async def test_unknown_operator_raises(engine) -> None:
    with pytest.raises(OperatorNotFoundError):
        await engine.registry.get("ghost")
    with pytest.raises(OperatorNotFoundError):
        await engine.registry.adjust_load("ghost", 1)
    assert not await engine.registry.is_operator_available("ghost")


@pytest.mark.asyncio
async def test_mark_all_offline_resets_presence(engine, bring_online) -> None:
    await bring_online("op1")
    await bring_online("op2")
    await engine.registry.go_offline("op2")

    changed = await engine.registry.mark_all_offline()

    assert changed == 1
    assert all(not operator.is_online for operator in await engine.registry.snapshot())


@pytest.mark.asyncio
async def test_enqueue_cleans_input(engine) -> None:
    request = await engine.queue.enqueue("  c1 ", "   ", "  need help  ")

    assert request.customer_id == "c1"
    assert request.customer_name == "c1"
    assert request.message == "need help"
    assert request.status == ChatRequestStatus.WAITING


@pytest.mark.asyncio
async def test_enqueue_requires_customer_id(engine) -> None:
    with pytest.raises(ValueError):
        await engine.queue.enqueue("  ", "Someone", "hello")


@pytest.mark.asyncio
async def test_mark_terminal_validates_target(engine) -> None:
    request = await engine.queue.enqueue("c1", "Customer One", "hello")

    with pytest.raises(ValueError):
        await engine.queue.mark_terminal(request.id, ChatRequestStatus.WAITING)
    with pytest.raises(ValueError):
        await engine.queue.mark_terminal(request.id, ChatRequestStatus.ASSIGNED)
    with pytest.raises(ChatRequestNotFoundError):
        await engine.queue.mark_terminal("missing", ChatRequestStatus.REJECTED)
