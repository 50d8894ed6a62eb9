"""
WebSocket endpoint for live thread updates.

Protocol (JSON text frames):
- client ``{"type": "INIT", "taskId"?: int, "currentUser"?: str}`` selects
  the viewed task; the server answers ``SUBSCRIBED``
- client ``{"type": "PING"}``; the server answers ``PONG``
- server pushes ``THREAD_UPDATE``, ``UNREAD`` and ``USER_STATUS``
- anything else gets ``{"type": "ERROR", "detail": ...}``

A connection idle for longer than the configured timeout is closed with
code 1001. When the registry is full the connection is closed with 1013.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from taskchat.config import settings
from taskchat.exceptions import RegistryFullError
from taskchat.threads.broadcaster import Broadcaster, Subscriber

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013


async def _handle_frame(
    websocket: WebSocket,
    broadcaster: Broadcaster,
    subscriber: Subscriber,
    raw: str,
) -> None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json({"type": "ERROR", "detail": "Invalid JSON"})
        return

    if not isinstance(data, dict):
        await websocket.send_json({"type": "ERROR", "detail": "Expected a JSON object"})
        return

    msg_type = data.get("type")
    broadcaster.touch(subscriber)

    if msg_type == "PING":
        await websocket.send_json({"type": "PONG"})
        return

    if msg_type == "INIT":
        task_id = data.get("taskId")
        username = data.get("currentUser")
        if task_id is not None and (isinstance(task_id, bool) or not isinstance(task_id, int)):
            await websocket.send_json({"type": "ERROR", "detail": "taskId must be an integer"})
            return
        if username is not None and not isinstance(username, str):
            await websocket.send_json({"type": "ERROR", "detail": "currentUser must be a string"})
            return

        username = (username or "").strip() or subscriber.username
        await websocket.send_json(
            {"type": "SUBSCRIBED", "taskId": task_id, "currentUser": username}
        )
        await broadcaster.subscribe(subscriber, task_id=task_id, username=username)
        logger.debug(
            "Connection %d: user=%s task=%s", subscriber.id, username, task_id
        )
        return

    await websocket.send_json(
        {"type": "ERROR", "detail": f"Unknown message type: {msg_type!r}"}
    )


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Live connection: one viewed task, presence and unread pushes."""
    broadcaster: Broadcaster = websocket.app.state.broadcaster

    await websocket.accept()

    try:
        subscriber = broadcaster.register(websocket)
    except RegistryFullError as e:
        logger.warning("Refusing WebSocket connection: %s", e)
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Too many connections")
        return

    try:
        while True:
            try:
                raw = await asyncio.wait_for(
                    websocket.receive_text(), timeout=settings.ws_idle_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.info("Closing idle connection %d", subscriber.id)
                await websocket.close(code=CLOSE_GOING_AWAY, reason="Idle timeout")
                break
            await _handle_frame(websocket, broadcaster, subscriber, raw)
    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected: connection %d", subscriber.id)
    except Exception as e:
        logger.error("WebSocket error on connection %d: %s", subscriber.id, e)
    finally:
        await broadcaster.unregister(subscriber)
