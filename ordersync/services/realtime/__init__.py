"""
Realtime Channel Factory

Returns an in-memory or websocket channel based on ENV_MODE. In
development every channel shares one in-process hub, which the mock
order backend also emits to.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from ordersync.core.config import get_settings
from ordersync.services.alerts import get_alert_service
from ordersync.services.realtime.base import (
    BaseRealtimeChannel,
    ChannelNotification,
    ConnectionState,
    Events,
    Room,
)
from ordersync.services.realtime.event_bus import EventBus, Subscription
from ordersync.services.realtime.mock import InMemoryRealtimeChannel, InMemoryRealtimeHub
from ordersync.services.realtime.websocket import WebSocketRealtimeChannel

logger = logging.getLogger(__name__)


@lru_cache()
def get_realtime_hub() -> InMemoryRealtimeHub:
    """Shared in-process hub used in development."""
    return InMemoryRealtimeHub()


def create_realtime_channel() -> BaseRealtimeChannel:
    """Build a new, unconnected channel for the current environment."""
    settings = get_settings()
    options = {
        "alerts": get_alert_service(),
        "sound_enabled": settings.sound_enabled,
        "desktop_notifications_enabled": settings.desktop_notifications_enabled,
    }

    if settings.is_development:
        return InMemoryRealtimeChannel(get_realtime_hub(), **options)
    return WebSocketRealtimeChannel(settings.realtime_url, **options)


@lru_cache()
def get_realtime_channel() -> BaseRealtimeChannel:
    """Get the process-wide realtime channel."""
    settings = get_settings()
    channel = create_realtime_channel()
    logger.info(
        f"Realtime Channel: Using {type(channel).__name__} ({settings.env_mode.value} mode)"
    )
    return channel


def reset_realtime_channel() -> None:
    """Clear the cached channel and hub."""
    get_realtime_channel.cache_clear()
    get_realtime_hub.cache_clear()


__all__ = [
    "get_realtime_channel",
    "get_realtime_hub",
    "create_realtime_channel",
    "reset_realtime_channel",
    "BaseRealtimeChannel",
    "ChannelNotification",
    "ConnectionState",
    "Events",
    "Room",
    "EventBus",
    "Subscription",
    "InMemoryRealtimeChannel",
    "InMemoryRealtimeHub",
    "WebSocketRealtimeChannel",
]
