import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from app.schemas.assignment import AssignmentResponse
from app.schemas.chat_request import ChatRequestResponse
from app.services.assignment_service import CustomerChatState
from app.services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter()


def _envelope(event: str, payload: Any) -> dict[str, Any]:
    return {
        "event": event,
        "payload": payload,
        "sent_at": datetime.now(UTC).isoformat(),
    }


def _pending_payload(requests) -> dict[str, Any]:
    return {
        "items": [
            ChatRequestResponse.model_validate(request).model_dump(mode="json")
            for request in requests
        ]
    }


def _assignments_payload(assignments) -> dict[str, Any]:
    return {
        "items": [
            AssignmentResponse.model_validate(assignment).model_dump(mode="json")
            for assignment in assignments
        ]
    }


def _customer_payload(state: CustomerChatState) -> dict[str, Any]:
    return {
        "request": (
            ChatRequestResponse.model_validate(state.request).model_dump(mode="json")
            if state.request is not None
            else None
        ),
        "assignment": (
            AssignmentResponse.model_validate(state.assignment).model_dump(mode="json")
            if state.assignment is not None
            else None
        ),
    }


async def _pump(
    websocket: WebSocket,
    event: str,
    stream: AsyncIterator,
    serialize: Callable[[Any], dict[str, Any]],
) -> None:
    try:
        async with aclosing(stream) as snapshots:
            async for snapshot in snapshots:
                await websocket.send_json(_envelope(event, serialize(snapshot)))
    except StoreUnavailableError as exc:
        logger.warning("Realtime %s stream stopped: %s", event, exc)
        await websocket.send_json(_envelope("system.error", {"detail": str(exc)}))
        await websocket.close(code=1011, reason="Shared state store unavailable")


def _connection_counts(websocket: WebSocket) -> dict[str, int]:
    counts = getattr(websocket.app.state, "operator_connections", None)
    if counts is None:
        counts = {}
        websocket.app.state.operator_connections = counts
    return counts


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    engine = getattr(websocket.app.state, "engine", None)
    if engine is None:
        await websocket.close(code=1011, reason="Routing engine not initialized")
        return

    role = websocket.query_params.get("role", "").strip().lower()
    operator_id = websocket.query_params.get("operator_id", "").strip()
    customer_id = websocket.query_params.get("customer_id", "").strip()

    if role == "operator":
        if not operator_id:
            await websocket.close(
                code=1008,
                reason="Operator websocket requires operator_id query parameter",
            )
            return
    elif role == "customer":
        if not customer_id:
            await websocket.close(
                code=1008,
                reason="Customer websocket requires customer_id query parameter",
            )
            return
    else:
        await websocket.close(
            code=1008,
            reason="Unsupported role. Use role=customer or role=operator",
        )
        return

    await websocket.accept()

    tracked_operator_id: str | None = None
    if role == "operator":
        try:
            await engine.registry.go_online(operator_id)
        except StoreUnavailableError as exc:
            logger.warning("Operator %s could not go online: %s", operator_id, exc)
            await websocket.close(code=1011, reason="Shared state store unavailable")
            return
        counts = _connection_counts(websocket)
        counts[operator_id] = counts.get(operator_id, 0) + 1
        tracked_operator_id = operator_id
        streams = [
            ("requests.pending", engine.queue.watch_pending(), _pending_payload),
            (
                "assignments.active",
                engine.lifecycle.watch_operator_assignments(operator_id),
                _assignments_payload,
            ),
        ]
    else:
        streams = [
            (
                "customer.state",
                engine.lifecycle.watch_customer(customer_id),
                _customer_payload,
            ),
        ]

    await websocket.send_json(
        _envelope(
            "system.connected",
            {"role": role, "streams": [event for event, _, _ in streams]},
        )
    )
    pumps = [
        asyncio.create_task(_pump(websocket, event, stream, serialize))
        for event, stream, serialize in streams
    ]

    try:
        while True:
            raw_message = await websocket.receive_text()
            if raw_message.strip().lower() == "ping":
                await websocket.send_json(_envelope("system.pong", {}))
                continue

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError:
                await websocket.send_json(
                    _envelope("system.error", {"detail": "Expected JSON payload"})
                )
                continue

            if isinstance(message, dict) and message.get("action") == "ping":
                await websocket.send_json(_envelope("system.pong", {}))
                continue

            await websocket.send_json(
                _envelope("system.error", {"detail": "Unsupported action"})
            )
    except WebSocketDisconnect:
        pass
    finally:
        for pump in pumps:
            pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)

        if tracked_operator_id is not None:
            counts = _connection_counts(websocket)
            remaining = counts.get(tracked_operator_id, 1) - 1
            if remaining > 0:
                counts[tracked_operator_id] = remaining
            else:
                counts.pop(tracked_operator_id, None)
                try:
                    await engine.registry.go_offline(tracked_operator_id)
                except StoreUnavailableError as exc:
                    logger.warning(
                        "Operator %s could not go offline: %s", tracked_operator_id, exc
                    )
