from __future__ import annotations

from typing import Any

import pytest

from premiumcollect.services.broadcaster import LiveBroadcaster


class _FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)


class _BrokenSocket:
    async def send_json(self, data: Any) -> None:
        raise RuntimeError("connection reset")


@pytest.mark.asyncio
async def test_publish_reaches_only_authenticated_sessions() -> None:
    hub = LiveBroadcaster()
    authed = _FakeSocket()
    anonymous = _FakeSocket()
    hub.register(authed)
    hub.register(anonymous)
    hub.authenticate(authed, user_id="u1", role="admin")

    delivered = await hub.publish("collection_updated", {"collection_id": "c1"})

    assert delivered == 1
    assert anonymous.sent == []
    message = authed.sent[0]
    assert message["type"] == "collection_updated"
    assert message["data"] == {"collection_id": "c1"}
    assert message["timestamp"]


@pytest.mark.asyncio
async def test_channel_publish_requires_subscription() -> None:
    hub = LiveBroadcaster()
    subscribed = _FakeSocket()
    other = _FakeSocket()
    for socket, user in ((subscribed, "u1"), (other, "u2")):
        hub.register(socket)
        hub.authenticate(socket, user_id=user, role="user")
    hub.subscribe(subscribed, "collections")

    assert await hub.publish("collection_created", {}, channel="collections") == 1
    assert len(subscribed.sent) == 1
    assert other.sent == []


@pytest.mark.asyncio
async def test_failed_recipient_is_dropped_and_others_still_receive() -> None:
    hub = LiveBroadcaster()
    broken = _BrokenSocket()
    healthy = _FakeSocket()
    for socket, user in ((broken, "u1"), (healthy, "u2")):
        hub.register(socket)
        hub.authenticate(socket, user_id=user, role="user")

    delivered = await hub.publish("policy_updated", {"policy_id": "p1"})

    assert delivered == 1
    assert len(healthy.sent) == 1
    assert hub.get(broken) is None
    assert hub.session_count == 1


@pytest.mark.asyncio
async def test_publish_with_no_sessions_is_a_no_op() -> None:
    assert await LiveBroadcaster().publish("collections_bulk_updated", {}) == 0


def test_unregister_forgets_session() -> None:
    hub = LiveBroadcaster()
    socket = _FakeSocket()
    hub.register(socket)
    hub.unregister(socket)
    hub.unregister(socket)
    assert hub.session_count == 0
