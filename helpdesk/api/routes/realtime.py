from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from helpdesk.api.dependencies.database import require_database
from helpdesk.core.logging import log_debug
from helpdesk.security.session import session_manager
from helpdesk.services.direct_message_hub import DirectMessageHub, RealtimeServices

router = APIRouter(tags=["Realtime"])


def _parse_receiver(frame: dict[str, Any]) -> int | None:
    value = frame.get("receiver_id")
    if isinstance(value, bool):
        return None
    try:
        receiver_id = int(value)
    except (TypeError, ValueError):
        return None
    return receiver_id if receiver_id > 0 else None


async def handle_client_frame(hub: DirectMessageHub, identity: int, raw: str) -> None:
    """Dispatch one inbound websocket frame; unusable frames are ignored."""

    try:
        frame = json.loads(raw)
    except (ValueError, RecursionError):
        log_debug("Ignoring non-JSON websocket frame", user_id=identity)
        return
    if not isinstance(frame, dict):
        return

    event = str(frame.get("event") or "").strip().lower()
    receiver_id = _parse_receiver(frame)
    if receiver_id is None:
        log_debug("Ignoring websocket frame without receiver", user_id=identity, event=event)
        return

    if event == "typing":
        await hub.notify_typing(identity, receiver_id)
    elif event == "stopped_typing":
        await hub.notify_stopped_typing(identity, receiver_id)
    else:
        log_debug("Ignoring unknown websocket event", user_id=identity, event=event)


@router.websocket("/ws/direct-messages")
async def direct_message_updates(websocket: WebSocket) -> None:
    """Keep a direct message session open for presence, typing and message pushes."""

    realtime: RealtimeServices = websocket.app.state.realtime
    await require_database()
    session = await session_manager.load_session(websocket)
    if not session or session.user_id <= 0:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Not authenticated")
        return

    await websocket.accept()
    identity = session.user_id
    connection_id = realtime.transport.attach(websocket)
    try:
        await realtime.hub.on_connect(identity, connection_id)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                log_debug("Ignoring binary websocket frame", user_id=identity)
                continue
            await handle_client_frame(realtime.hub, identity, raw)
    except WebSocketDisconnect:
        pass
    finally:
        realtime.transport.detach(connection_id)
        await realtime.hub.on_disconnect(identity, connection_id)
