from __future__ import annotations

import json
from typing import Any

from fastapi import WebSocketDisconnect
import pytest

from premiumcollect.apps.api.routes.realtime import _handle_message, live_updates
from premiumcollect.services.auth.sessions import issue_session_token
from premiumcollect.services.broadcaster import broadcaster
from premiumcollect.tests.utils.auth import create_test_api_key, create_test_staff
from premiumcollect.tests.utils.data import create_test_captive, create_test_policy


class _ScriptedSocket:
    # Replays client frames, then disconnects.
    def __init__(self, frames: list[Any]) -> None:
        self._frames = [frame if isinstance(frame, str) else json.dumps(frame) for frame in frames]
        self.sent: list[dict[str, Any]] = []
        self.accepted = False
        self.sessions_seen: list[int] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)
        self.sessions_seen.append(broadcaster.session_count)

    async def receive_text(self) -> str:
        if not self._frames:
            raise WebSocketDisconnect(code=1000)
        return self._frames.pop(0)


@pytest.mark.asyncio
async def test_live_session_protocol() -> None:
    token, _headers, _user_id = await create_test_staff(role="manager")
    socket = _ScriptedSocket(
        [
            "not json",
            {"type": "subscribe", "channel": "collections"},
            {"type": "auth"},
            {"type": "auth", "token": "garbage"},
            {"type": "auth", "token": token},
            {"type": "subscribe"},
            {"type": "subscribe", "channel": "collections"},
            {"type": "ping"},
        ]
    )

    await live_updates(socket)

    assert socket.accepted
    assert [(message["type"], message.get("message")) for message in socket.sent] == [
        ("connected", "WebSocket connection established"),
        ("error", "Invalid message format"),
        ("error", "Authentication required"),
        ("auth_error", "Token required"),
        ("auth_error", "Invalid token"),
        ("auth_success", "Authenticated successfully"),
        ("error", "channel is required"),
        ("subscribed", None),
        ("error", "Unsupported message type"),
    ]
    assert socket.sent[7]["channel"] == "collections"
    assert set(socket.sessions_seen) == {1}
    # The session is removed once the client goes away.
    assert broadcaster.session_count == 0


@pytest.mark.asyncio
async def test_token_for_unknown_user_is_rejected() -> None:
    token = issue_session_token(user_id="ghost", email="ghost@example.test", role="admin")
    socket = _ScriptedSocket([{"type": "auth", "token": token}])

    await live_updates(socket)

    assert socket.sent[-1] == {"type": "auth_error", "message": "Invalid token"}


@pytest.mark.asyncio
async def test_authenticated_session_receives_webhook_events(client) -> None:
    token, _headers, _user_id = await create_test_staff(role="admin")
    captive = await create_test_captive(code="ALPHA001", name="Alpha Insurance Cell")
    await create_test_policy(cell_captive_id=captive.id, policy_number="POL-001")
    _raw, captive_headers, _key_id = await create_test_api_key(cell_captive_id=captive.id)

    watcher = _ScriptedSocket([])
    bystander = _ScriptedSocket([])
    broadcaster.register(watcher)
    broadcaster.register(bystander)
    await _handle_message(watcher, {"type": "auth", "token": token})

    response = await client.post(
        "/v1/webhooks/policies/update",
        json={"policy_number": "POL-001", "status": "lapsed"},
        headers=captive_headers,
    )

    assert response.status_code == 200
    assert watcher.sent[-1]["type"] == "policy_updated"
    assert watcher.sent[-1]["data"]["status"] == "lapsed"
    assert watcher.sent[-1]["data"]["cell_captive"] == "Alpha Insurance Cell"
    # Unauthenticated connections never receive dashboard events.
    assert bystander.sent == []
