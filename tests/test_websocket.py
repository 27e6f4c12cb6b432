"""Tests for the Socket.IO notification bridge."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from claimflow.modules.notifications.bus import ADMIN_CHANNEL, EventKind, NotificationEvent
from claimflow.realtime.websocket import (
    ClaimEventsSocket,
    SocketSubscriber,
    channel_from_request,
    parse_identity,
)
from claimflow.security.rbac import Role


@pytest.fixture
def sio():
    server = MagicMock()
    server.emit = AsyncMock()
    return server


@pytest.fixture
def socket(sio, bus) -> ClaimEventsSocket:
    return ClaimEventsSocket(sio, bus)


class TestHelpers:
    def test_parse_identity(self) -> None:
        ident = parse_identity({"user_id": "5", "role": "admin"})
        assert ident.user_id == 5 and ident.role == Role.ADMIN
        assert parse_identity({"userId": 3}).role == Role.STAFF
        assert parse_identity(None) is None
        assert parse_identity({"user_id": "abc"}) is None
        assert parse_identity({"user_id": 1, "role": "root"}) is None

    def test_channel_from_request(self) -> None:
        assert channel_from_request(4) == "user-4"
        assert channel_from_request("4") == "user-4"
        assert channel_from_request("admins") == ADMIN_CHANNEL
        assert channel_from_request({"channel": "user-9"}) == "user-9"
        assert channel_from_request({"userId": 9}) == "user-9"
        assert channel_from_request(None) is None


class TestClaimEventsSocket:
    """Tests for connection lifecycle and channel membership."""

    def test_registers_handlers(self, sio, socket) -> None:
        events = {c.args[0] for c in sio.on.call_args_list}
        assert {"connect", "disconnect", "join-room", "leave-room"} <= events

    @pytest.mark.asyncio
    async def test_connect_requires_identity(self, socket, bus) -> None:
        assert await socket.on_connect("sid1", {}, None) is False
        assert socket.client_count == 0

    @pytest.mark.asyncio
    async def test_connect_joins_own_channel(self, socket, bus) -> None:
        assert await socket.on_connect("sid1", {}, {"user_id": 2}) is True
        assert bus.subscriber_count("user-2") == 1

    @pytest.mark.asyncio
    async def test_staff_cannot_join_admins(self, socket, sio, bus) -> None:
        await socket.on_connect("sid1", {}, {"user_id": 2, "role": "staff"})
        reply = await socket.on_join("sid1", "admins")
        assert reply["ok"] is False
        assert bus.subscriber_count(ADMIN_CHANNEL) == 0
        assert sio.emit.await_args.args[0] == "error"

    @pytest.mark.asyncio
    async def test_staff_cannot_join_other_user(self, socket, bus) -> None:
        await socket.on_connect("sid1", {}, {"user_id": 2})
        assert (await socket.on_join("sid1", 3))["ok"] is False
        assert bus.subscriber_count("user-3") == 0

    @pytest.mark.asyncio
    async def test_admin_joins_admins_and_receives_events(self, socket, sio, bus) -> None:
        await socket.on_connect("sid1", {}, {"user_id": 1, "role": "admin"})
        assert (await socket.on_join("sid1", "admins"))["ok"] is True

        event = NotificationEvent(kind=EventKind.NEW_CLAIM, target_channel=ADMIN_CHANNEL, payload={"id": 3})
        assert bus.publish(ADMIN_CHANNEL, event) == 1
        await bus.drain()
        sio.emit.assert_awaited_with("new-expense", {"id": 3}, to="sid1")

    @pytest.mark.asyncio
    async def test_leave_and_disconnect(self, socket, bus) -> None:
        await socket.on_connect("sid1", {}, {"user_id": 1, "role": "admin"})
        await socket.on_join("sid1", "admins")
        await socket.on_leave("sid1", "admins")
        assert bus.subscriber_count(ADMIN_CHANNEL) == 0

        await socket.on_disconnect("sid1", "client disconnect")
        assert bus.subscriber_count("user-1") == 0
        assert socket.client_count == 0

    def test_subscribers_compare_by_session(self, sio) -> None:
        assert SocketSubscriber(sio, "a") == SocketSubscriber(sio, "a")
        assert hash(SocketSubscriber(sio, "a")) == hash(SocketSubscriber(sio, "a"))
        assert SocketSubscriber(sio, "a") != SocketSubscriber(sio, "b")
