"""Notification fan-out: channels, events and the admin email observer."""

from claimflow.modules.notifications.bus import (
    ADMIN_CHANNEL,
    EventKind,
    NotificationBus,
    NotificationEvent,
    Subscriber,
    authorize_channel,
    user_channel,
)

__all__ = [
    "ADMIN_CHANNEL",
    "EventKind",
    "NotificationBus",
    "NotificationEvent",
    "Subscriber",
    "authorize_channel",
    "user_channel",
]
