from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from premiumcollect.apps.api.deps import authenticate_staff_token
from premiumcollect.persistence.db import get_session
from premiumcollect.services.auth.sessions import SessionTokenError
from premiumcollect.services.broadcaster import broadcaster


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _handle_message(websocket: WebSocket, message: dict[str, Any]) -> None:
    kind = message.get("type")
    if kind == "auth":
        token = message.get("token")
        if not token or not isinstance(token, str):
            await websocket.send_json({"type": "auth_error", "message": "Token required"})
            return
        try:
            async with get_session() as db:
                staff = await authenticate_staff_token(db, token)
        except SessionTokenError:
            await websocket.send_json({"type": "auth_error", "message": "Invalid token"})
            return
        broadcaster.authenticate(websocket, user_id=staff.user_id, role=staff.role)
        logger.info("live_session_authenticated user_id=%s", staff.user_id)
        await websocket.send_json({"type": "auth_success", "message": "Authenticated successfully"})
        return

    if kind == "subscribe":
        session = broadcaster.get(websocket)
        if session is None or not session.authenticated:
            await websocket.send_json({"type": "error", "message": "Authentication required"})
            return
        channel = message.get("channel")
        if not channel or not isinstance(channel, str):
            await websocket.send_json({"type": "error", "message": "channel is required"})
            return
        broadcaster.subscribe(websocket, channel)
        await websocket.send_json({"type": "subscribed", "channel": channel})
        return

    await websocket.send_json({"type": "error", "message": "Unsupported message type"})


@router.websocket("/ws")
async def live_updates(websocket: WebSocket) -> None:
    await websocket.accept()
    broadcaster.register(websocket)
    try:
        await websocket.send_json({"type": "connected", "message": "WebSocket connection established"})
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                message = None
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "message": "Invalid message format"})
                continue
            await _handle_message(websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unregister(websocket)
