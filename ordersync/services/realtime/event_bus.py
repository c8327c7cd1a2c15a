"""
Realtime event bus.

Any number of callbacks per event name. subscribe() returns a
Subscription whose unsubscribe() removes exactly that callback, so a
re-mounted surface cannot knock out another surface's listener.
Callbacks may be plain functions or coroutine functions; a failing
callback is logged and delivery continues with the next one.
"""

import asyncio
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], Union[None, Awaitable[None]]]


class Subscription:
    """Token returned by EventBus.subscribe()."""

    def __init__(self, bus: "EventBus", event: str, token: int, callback: EventCallback):
        self._bus = bus
        self.event = event
        self.token = token
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __repr__(self) -> str:
        return f"<Subscription {self.event}#{self.token} active={self.active}>"


class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, event: str, callback: EventCallback) -> Subscription:
        subscription = Subscription(self, event, next(self._tokens), callback)
        self._subscribers.setdefault(event, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.event, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            self._subscribers.pop(subscription.event, None)

    def subscriber_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._subscribers.get(event, []))
        return sum(len(subs) for subs in self._subscribers.values())

    def clear(self) -> None:
        for subscribers in list(self._subscribers.values()):
            for subscription in list(subscribers):
                subscription.active = False
        self._subscribers.clear()

    async def publish(self, event: str, data: Any = None) -> int:
        """Deliver to every current subscriber in registration order; returns deliveries."""
        delivered = 0
        for subscription in list(self._subscribers.get(event, [])):
            if not subscription.active:
                continue
            try:
                result = subscription.callback(data)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Listener {subscription!r} failed for '{event}'")
        return delivered
