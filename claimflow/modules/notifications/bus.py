"""Best-effort publish/subscribe fan-out for claim lifecycle events.

Channels are plain string keys: ``user-{id}`` for one person, ``admins``
for the admin pool. Nothing is queued; an event published to a channel
without live subscribers is dropped. The claims table remains the system of
record, so a lost event only delays a client refresh.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from enum import StrEnum
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from claimflow.logging_config import get_logger
from claimflow.security.rbac import Permission, UserIdentity

logger = get_logger(__name__)

ADMIN_CHANNEL = "admins"
USER_CHANNEL_PREFIX = "user-"


def user_channel(user_id: int | str) -> str:
    return f"{USER_CHANNEL_PREFIX}{user_id}"


def authorize_channel(identity: UserIdentity, channel: str) -> bool:
    """Callers may join their own user channel, admins also the admin channel."""
    if channel == ADMIN_CHANNEL:
        return identity.has_permission(Permission.ADMIN_CHANNEL)
    return channel == user_channel(identity.user_id)


class EventKind(StrEnum):
    """Lifecycle events; values double as the wire event names."""
    NEW_CLAIM = "new-expense"
    CLAIM_DECIDED = "expense-updated"


class NotificationEvent(BaseModel):
    kind: EventKind
    payload: dict[str, Any]
    target_channel: str
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))


@runtime_checkable
class Subscriber(Protocol):
    """Anything with an async ``deliver``.

    A subscriber may set a ``delivery_timeout`` attribute to replace the
    bus default for its own deliveries.
    """

    async def deliver(self, event: NotificationEvent) -> None: ...


class NotificationBus:
    """In-process channel registry with independent per-subscriber delivery."""

    def __init__(self, delivery_timeout: float = 10.0) -> None:
        self._delivery_timeout = delivery_timeout
        self._channels: dict[str, set[Subscriber]] = {}
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    def subscribe(self, channel: str, subscriber: Subscriber) -> None:
        self._channels.setdefault(channel, set()).add(subscriber)
        logger.debug("channel_subscribed", channel=channel, members=len(self._channels[channel]))

    def unsubscribe(self, channel: str, subscriber: Subscriber) -> None:
        members = self._channels.get(channel)
        if not members:
            return
        members.discard(subscriber)
        if not members:
            del self._channels[channel]
        logger.debug("channel_unsubscribed", channel=channel)

    def unsubscribe_all(self, subscriber: Subscriber) -> list[str]:
        """Drop a subscriber from every channel; returns the channels it left."""
        left = [channel for channel, members in self._channels.items() if subscriber in members]
        for channel in left:
            self.unsubscribe(channel, subscriber)
        return left

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def publish(self, channel: str, event: NotificationEvent) -> int:
        """Schedule delivery of ``event`` to every current member of ``channel``.

        Returns immediately with the number of deliveries scheduled. Must be
        called from within a running event loop.
        """
        if self._closed:
            logger.debug("publish_after_close", channel=channel, kind=event.kind)
            return 0
        members = list(self._channels.get(channel, ()))
        if not members:
            logger.debug("publish_dropped", channel=channel, kind=event.kind)
            return 0
        for subscriber in members:
            task = asyncio.create_task(self._deliver(channel, subscriber, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        logger.debug("event_published", channel=channel, kind=event.kind, deliveries=len(members))
        return len(members)

    async def _deliver(self, channel: str, subscriber: Subscriber, event: NotificationEvent) -> None:
        timeout = getattr(subscriber, "delivery_timeout", None) or self._delivery_timeout
        try:
            await asyncio.wait_for(subscriber.deliver(event), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("notification_delivery_timeout", channel=channel, kind=event.kind, timeout=timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("notification_delivery_failed", channel=channel, kind=event.kind, error=str(exc))

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries to finish."""
        if self._pending:
            await asyncio.wait(set(self._pending), timeout=timeout)

    async def close(self) -> None:
        """Stop accepting events and cancel deliveries still in flight."""
        self._closed = True
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._channels.clear()
        logger.info("notification_bus_closed", cancelled=len(pending))
