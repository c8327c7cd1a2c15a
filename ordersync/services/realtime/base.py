"""
Realtime Channel Abstract Base Class

One duplex connection to the push server with:
- Explicit lifecycle (connect / disconnect / reconnect)
- Room subscriptions joined explicitly by each surface, re-joined after
  every reconnect
- A multi-subscriber event bus, plus "connection-state" events
- Best-effort notification side effects (tone + desktop notification)

Push delivery is not guaranteed across reconnects; surfaces treat events
as a freshness hint and keep a manual reload.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, List, Optional, Set

from ordersync.schemas import utcnow
from ordersync.services.alerts.base import AlertKind, BaseAlertService
from ordersync.services.realtime.event_bus import EventBus, EventCallback, Subscription

logger = logging.getLogger(__name__)


# =============================================================================
# EVENTS / ROOMS
# =============================================================================

class Events:
    NEW_ORDER = "new-order"
    ORDER_STATUS_UPDATE = "order-status-update"
    ORDER_COMPLETED = "order-completed"
    ORDER_CANCELLED = "order-cancelled"
    ORDER_DELETED = "order-deleted"
    NEW_ITEMS_ADDED = "new-items-added"
    CONNECTION_STATE = "connection-state"


class Room:
    ADMIN = "admin"
    KITCHEN = "kitchen"

    @staticmethod
    def table(table_number: Any) -> str:
        return f"table:{table_number}"

    @staticmethod
    def customer(order_id: Any) -> str:
        return f"customer:{order_id}"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class ChannelNotification:
    """Entry of the recent-notifications feed."""
    kind: AlertKind
    title: str
    body: str
    timestamp: datetime = field(default_factory=utcnow)
    read: bool = False


class BaseRealtimeChannel(ABC):
    """Abstract base class for realtime channels."""

    FEED_SIZE = 10

    def __init__(
        self,
        alerts: Optional[BaseAlertService] = None,
        sound_enabled: bool = True,
        desktop_notifications_enabled: bool = True,
    ):
        self.bus = EventBus()
        self.alerts = alerts
        self.sound_enabled = sound_enabled
        self.desktop_notifications_enabled = desktop_notifications_enabled
        self.reload_required = False
        self.notifications: Deque[ChannelNotification] = deque(maxlen=self.FEED_SIZE)
        self._state = ConnectionState.CLOSED
        self._rooms: Set[str] = set()
        self._side_effects: Set[asyncio.Task] = set()

    # ==========================================================================
    # ABSTRACT TRANSPORT
    # ==========================================================================

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the transport name."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and join every remembered room."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection; rooms are remembered for the next connect."""
        pass

    @abstractmethod
    async def _send_join(self, room: str) -> None:
        pass

    @abstractmethod
    async def _send_leave(self, room: str) -> None:
        pass

    # ==========================================================================
    # STATE
    # ==========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def degraded(self) -> bool:
        """True while live updates may be missing."""
        return self._state in (ConnectionState.DEGRADED, ConnectionState.FAILED)

    @property
    def rooms(self) -> Set[str]:
        return set(self._rooms)

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.info(f"Realtime {self.provider_name}: {previous.value} -> {state.value}")
        await self.bus.publish(Events.CONNECTION_STATE, {
            "state": state.value,
            "previous": previous.value,
            "reloadRequired": self.reload_required,
        })

    async def reconnect(self) -> None:
        """Manual reconnect, the only way out of the failed state."""
        self.reload_required = False
        if self._state not in (ConnectionState.CLOSED, ConnectionState.FAILED):
            await self.disconnect()
        await self.connect()

    # ==========================================================================
    # ROOMS / SUBSCRIPTIONS
    # ==========================================================================

    async def join(self, room: str) -> None:
        self._rooms.add(room)
        if self.connected:
            await self._send_join(room)
        logger.debug(f"Joined room {room}")

    async def leave(self, room: str) -> None:
        if room not in self._rooms:
            return
        self._rooms.discard(room)
        if self.connected:
            await self._send_leave(room)
        logger.debug(f"Left room {room}")

    async def _rejoin_rooms(self) -> None:
        for room in sorted(self._rooms):
            await self._send_join(room)

    def subscribe(self, event: str, callback: EventCallback) -> Subscription:
        return self.bus.subscribe(event, callback)

    async def dispatch(self, event: str, data: Any) -> int:
        """Hand an incoming event to the subscribers."""
        return await self.bus.publish(event, data)

    # ==========================================================================
    # NOTIFICATION SIDE EFFECTS
    # ==========================================================================

    def notify(self, kind: AlertKind, title: str, body: str) -> List[asyncio.Task]:
        """
        Record a notification and fire its tone / desktop alert in the background.

        Returns the scheduled tasks; callers never need to await them.
        """
        self.notifications.appendleft(ChannelNotification(kind=kind, title=title, body=body))
        if self.alerts is None:
            return []

        tasks = []
        if self.sound_enabled:
            tasks.append(self._spawn(self.alerts.play_tone(kind), f"tone:{kind.value}"))
        if self.desktop_notifications_enabled:
            tasks.append(self._spawn(self.alerts.show_notification(title, body), f"desktop:{title}"))
        return tasks

    def _spawn(self, coro, label: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._side_effects.add(task)

        def done(t: asyncio.Task) -> None:
            self._side_effects.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                logger.warning(f"Alert {label} failed: {error}")
            elif getattr(t.result(), "success", True) is False:
                logger.debug(f"Alert {label} not delivered: {t.result().error_message}")

        task.add_done_callback(done)
        return task

    def mark_notifications_read(self) -> None:
        for notification in self.notifications:
            notification.read = True

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    async def drain_side_effects(self) -> None:
        """Wait for pending alerts (used on shutdown and in tests)."""
        if self._side_effects:
            await asyncio.gather(*list(self._side_effects), return_exceptions=True)

    async def _cancel_side_effects(self) -> None:
        for task in list(self._side_effects):
            task.cancel()
        await self.drain_side_effects()
