from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

from premiumcollect.core.timeutils import utc_now


logger = logging.getLogger(__name__)


class JsonSender(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass(eq=False)
class LiveSession:
    websocket: JsonSender
    user_id: str | None = None
    role: str | None = None
    channels: set[str] = field(default_factory=set)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


class LiveBroadcaster:
    """Fan dashboard events out to authenticated WebSocket sessions."""

    def __init__(self) -> None:
        self._sessions: dict[int, LiveSession] = {}

    def register(self, websocket: JsonSender) -> LiveSession:
        session = LiveSession(websocket=websocket)
        self._sessions[id(websocket)] = session
        return session

    def unregister(self, websocket: JsonSender) -> None:
        self._sessions.pop(id(websocket), None)

    def get(self, websocket: JsonSender) -> LiveSession | None:
        return self._sessions.get(id(websocket))

    def authenticate(self, websocket: JsonSender, *, user_id: str, role: str | None) -> LiveSession:
        session = self._sessions.get(id(websocket)) or self.register(websocket)
        session.user_id = user_id
        session.role = role
        return session

    def subscribe(self, websocket: JsonSender, channel: str) -> None:
        session = self._sessions.get(id(websocket))
        if session is not None:
            session.channels.add(channel)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def _recipients(self, channel: str | None) -> list[LiveSession]:
        return [
            session
            for session in self._sessions.values()
            if session.authenticated and (channel is None or channel in session.channels)
        ]

    async def publish(self, event_type: str, data: dict[str, Any], channel: str | None = None) -> int:
        # Never raises: a failed recipient is dropped and the rest still receive the event.
        message = {"type": event_type, "data": data, "timestamp": utc_now().isoformat()}
        delivered = 0
        for session in self._recipients(channel):
            try:
                await session.websocket.send_json(message)
                delivered += 1
            except Exception as exc:  # noqa: BLE001
                self._sessions.pop(id(session.websocket), None)
                logger.warning(
                    "live_session_dropped user_id=%s event=%s error=%s",
                    session.user_id,
                    event_type,
                    type(exc).__name__,
                )
        return delivered


broadcaster = LiveBroadcaster()
