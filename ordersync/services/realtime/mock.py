"""
In-Memory Realtime Channel

Simulates the push server for development and tests. The hub keeps the
attached channels; emit() delivers one JSON-decoded copy of the payload to
every connected channel that joined at least one of the target rooms.

Connection loss can be simulated per channel (events are dropped while
degraded) or globally with a random drop rate.

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional, Set

from ordersync.core.exceptions import RealtimeConnectionError
from ordersync.schemas import utcnow
from ordersync.services.alerts.base import BaseAlertService
from ordersync.services.realtime.base import BaseRealtimeChannel, ConnectionState

logger = logging.getLogger(__name__)


@dataclass
class EmittedEvent:
    rooms: List[str]
    event: str
    data: Any
    delivered_to: int = 0
    emitted_at: datetime = field(default_factory=utcnow)


class InMemoryRealtimeHub:
    """In-process stand-in for the push server."""

    def __init__(self, drop_rate: float = 0.0):
        self.drop_rate = drop_rate
        self.channels: Set["InMemoryRealtimeChannel"] = set()
        self.history: List[EmittedEvent] = []
        logger.info(f"InMemoryRealtimeHub initialized (drop_rate={drop_rate:.0%})")

    def attach(self, channel: "InMemoryRealtimeChannel") -> None:
        self.channels.add(channel)

    def detach(self, channel: "InMemoryRealtimeChannel") -> None:
        self.channels.discard(channel)

    def _should_drop(self) -> bool:
        return self.drop_rate > 0 and random.random() < self.drop_rate

    async def emit(self, rooms: Iterable[str], event: str, data: Any) -> int:
        """Deliver an event to the rooms; returns how many channels received it."""
        rooms = list(rooms)
        wire = json.loads(json.dumps(data, default=str))
        record = EmittedEvent(rooms=rooms, event=event, data=wire)
        self.history.append(record)

        targets = [c for c in list(self.channels) if c.connected and c.rooms.intersection(rooms)]
        for channel in targets:
            if self._should_drop():
                logger.warning(f"Dropped '{event}' for channel {id(channel):x} (simulated)")
                continue
            await channel.dispatch(event, json.loads(json.dumps(wire)))
            record.delivered_to += 1
        return record.delivered_to

    def events(self, name: Optional[str] = None) -> List[EmittedEvent]:
        return [e for e in self.history if name is None or e.event == name]


class InMemoryRealtimeChannel(BaseRealtimeChannel):
    """Channel attached to an InMemoryRealtimeHub."""

    def __init__(
        self,
        hub: InMemoryRealtimeHub,
        alerts: Optional[BaseAlertService] = None,
        fail_connects: int = 0,
        **kwargs,
    ):
        super().__init__(alerts=alerts, **kwargs)
        self.hub = hub
        self.fail_connects = fail_connects
        self.sent: List[dict] = []

    @property
    def provider_name(self) -> str:
        return "memory"

    async def connect(self) -> None:
        if self.connected:
            return
        await self._set_state(ConnectionState.CONNECTING)
        if self.fail_connects > 0:
            self.fail_connects -= 1
            self.reload_required = True
            await self._set_state(ConnectionState.FAILED)
            raise RealtimeConnectionError("Simulated connection failure")
        self.hub.attach(self)
        await self._set_state(ConnectionState.CONNECTED)
        await self._rejoin_rooms()

    async def disconnect(self) -> None:
        self.hub.detach(self)
        await self._cancel_side_effects()
        await self._set_state(ConnectionState.CLOSED)

    async def _send_join(self, room: str) -> None:
        self.sent.append({"action": "join", "room": room})

    async def _send_leave(self, room: str) -> None:
        self.sent.append({"action": "leave", "room": room})

    async def simulate_drop(self) -> None:
        """Lose the connection: events are missed until simulate_restore()."""
        await self._set_state(ConnectionState.DEGRADED)

    async def simulate_restore(self) -> None:
        await self._set_state(ConnectionState.CONNECTED)
        await self._rejoin_rooms()
