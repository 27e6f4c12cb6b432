"""Socket.IO handlers that attach browser sessions to notification channels."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import socketio

from claimflow.logging_config import get_logger
from claimflow.modules.notifications.bus import (
    NotificationBus,
    NotificationEvent,
    authorize_channel,
    user_channel,
)
from claimflow.security.rbac import Role, UserIdentity

logger = get_logger(__name__)


def create_server(cors_origins: list[str] | str = "*") -> socketio.AsyncServer:
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=cors_origins,
        logger=False,
        engineio_logger=False,
    )


@dataclass(frozen=True)
class SocketSubscriber:
    """Delivers bus events to one Socket.IO session."""

    sio: socketio.AsyncServer
    sid: str

    async def deliver(self, event: NotificationEvent) -> None:
        await self.sio.emit(event.kind.value, event.payload, to=self.sid)


def parse_identity(auth: Any) -> Optional[UserIdentity]:
    """Build the caller identity from the connect ``auth`` payload."""
    if not isinstance(auth, dict):
        return None
    user_id = auth.get("user_id", auth.get("userId"))
    try:
        return UserIdentity(user_id=int(user_id), role=Role(auth.get("role", Role.STAFF)))
    except (TypeError, ValueError):
        return None


def channel_from_request(data: Any) -> Optional[str]:
    """Accept ``{"channel": ...}``, a channel key, or a bare user id."""
    if isinstance(data, dict):
        data = data.get("channel", data.get("userId"))
    if isinstance(data, int):
        return user_channel(data)
    if isinstance(data, str) and data:
        if data.isdigit():
            return user_channel(data)
        return data
    return None


class ClaimEventsSocket:
    """Manages WebSocket connections for claim notifications."""

    def __init__(self, sio: socketio.AsyncServer, bus: NotificationBus) -> None:
        self.sio = sio
        self.bus = bus
        self._identities: dict[str, UserIdentity] = {}

        sio.on("connect", self.on_connect)
        sio.on("disconnect", self.on_disconnect)
        sio.on("join-room", self.on_join)
        sio.on("leave-room", self.on_leave)

    @property
    def client_count(self) -> int:
        return len(self._identities)

    async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> bool:
        """Handle client connection."""
        identity = parse_identity(auth)
        if identity is None:
            logger.info("socket_connect_refused", sid=sid)
            return False
        self._identities[sid] = identity
        # Everyone follows their own channel without asking
        self.bus.subscribe(user_channel(identity.user_id), SocketSubscriber(self.sio, sid))
        logger.info("socket_connected", sid=sid, user_id=identity.user_id, total_clients=self.client_count)
        return True

    async def on_disconnect(self, sid: str, *args: Any) -> None:
        """Handle client disconnection."""
        self._identities.pop(sid, None)
        left = self.bus.unsubscribe_all(SocketSubscriber(self.sio, sid))
        logger.info("socket_disconnected", sid=sid, channels=left, total_clients=self.client_count)

    async def on_join(self, sid: str, data: Any) -> dict[str, Any]:
        """Handle a channel subscription request."""
        identity = self._identities.get(sid)
        channel = channel_from_request(data)
        if identity is None or channel is None or not authorize_channel(identity, channel):
            logger.warning("socket_join_refused", sid=sid, channel=channel)
            await self.sio.emit("error", {"error": f"Not allowed to join '{channel}'"}, to=sid)
            return {"ok": False, "channel": channel}
        self.bus.subscribe(channel, SocketSubscriber(self.sio, sid))
        logger.debug("socket_joined", sid=sid, channel=channel)
        return {"ok": True, "channel": channel}

    async def on_leave(self, sid: str, data: Any) -> dict[str, Any]:
        channel = channel_from_request(data)
        if channel is not None:
            self.bus.unsubscribe(channel, SocketSubscriber(self.sio, sid))
        return {"ok": channel is not None, "channel": channel}
