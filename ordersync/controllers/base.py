"""
Surface Controller Base

Shared orchestration for the customer, kitchen and admin surfaces:
- Timestamp guard: per order, the newest applied timestamp. Pushes,
  reload snapshots and REST responses older than it are dropped. Without a
  newer timestamp the status only moves forward, and a terminal status is
  never left
- Connection state: the degraded flag is surfaced, and a restored
  connection triggers a full reload for the pushes missed meanwhile
- Notices: dismissible messages, with a retry callable for transient failures
- Timers: asyncio tasks owned by the controller, cancelled on stop()
- OrderBoardController: active/completed partition used by kitchen and admin,
  with a grace delay before finished orders leave the active list

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from ordersync.core.config import Settings, get_settings
from ordersync.core.exceptions import (
    BackendError,
    CompletionBlockedError,
    DataIntegrityError,
    OrderNotFoundError,
    RealtimeConnectionError,
    TransportError,
)
from ordersync.schemas import (
    NewItemsAddedEvent,
    Order,
    OrderCancelledEvent,
    OrderCompletedEvent,
    OrderDeletedEvent,
    OrderStats,
    OrderStatus,
    OrderStatusUpdateEvent,
    parse_new_order_event,
    utcnow,
)
from ordersync.services import transition_policy
from ordersync.services.alerts.base import AlertKind
from ordersync.services.backend.base import BaseOrderBackend
from ordersync.services.realtime.base import BaseRealtimeChannel, ConnectionState, Events
from ordersync.services.realtime.event_bus import Subscription

logger = logging.getLogger(__name__)

_notice_ids = itertools.count(1)


# =============================================================================
# NOTICES
# =============================================================================

@dataclass
class Notice:
    """User-facing message; retry is set for transient failures."""
    level: str
    message: str
    retry: Optional[Callable[[], Awaitable[Any]]] = None
    id: int = field(default_factory=lambda: next(_notice_ids))
    created_at: datetime = field(default_factory=utcnow)


# =============================================================================
# TIMESTAMP GUARD
# =============================================================================

class TimestampGuard:
    """Last applied timestamp per order."""

    def __init__(self):
        self._applied: Dict[int, datetime] = {}

    def last(self, order_id: int) -> Optional[datetime]:
        return self._applied.get(order_id)

    def accepts(
        self,
        order_id: int,
        timestamp: Optional[datetime],
        incoming_status: Optional[OrderStatus] = None,
        current_status: Optional[OrderStatus] = None,
    ) -> bool:
        """
        True when an update may be applied.

        A newer timestamp wins and an older one loses. Without a timestamp
        to compare (missing, equal, or nothing applied yet) the status may
        only stay put or move forward. A terminal status is never left.
        """
        known = current_status is not None and incoming_status is not None
        if known and transition_policy.is_terminal(current_status) and incoming_status != current_status:
            return False
        last = self._applied.get(order_id)
        if timestamp is not None and last is not None and timestamp != last:
            return timestamp > last
        return not known or transition_policy.is_forward(current_status, incoming_status)

    def record(self, order_id: int, timestamp: Optional[datetime]) -> None:
        if timestamp is None:
            return
        last = self._applied.get(order_id)
        if last is None or timestamp > last:
            self._applied[order_id] = timestamp

    def forget(self, order_id: int) -> None:
        self._applied.pop(order_id, None)

    def clear(self) -> None:
        self._applied.clear()


# =============================================================================
# BASE CONTROLLER
# =============================================================================

class SurfaceController:
    """Lifecycle, notices, timers and the timestamp guard."""

    surface = "surface"

    def __init__(
        self,
        backend: BaseOrderBackend,
        channel: BaseRealtimeChannel,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.channel = channel
        self.settings = settings or get_settings()
        self.clock = clock
        self.guard = TimestampGuard()
        self.notices: List[Notice] = []
        self.revision = 0
        self._listeners: List[Callable[["SurfaceController"], None]] = []
        self._subscriptions: List[Subscription] = []
        self._timers: Dict[str, asyncio.Task] = {}
        self._started = False

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def _connect_channel(self) -> None:
        if self.channel.connected:
            return
        try:
            await self.channel.connect()
        except RealtimeConnectionError as e:
            logger.warning(f"{self.surface}: live updates unavailable ({e})")
            self.add_notice("warning", "Real-time updates unavailable. Use reload to refresh.", retry=self.reconnect)

    async def reconnect(self) -> None:
        """Manual reconnect followed by a full reload."""
        try:
            await self.channel.reconnect()
        except RealtimeConnectionError as e:
            self.add_notice("warning", f"Still offline: {e}", retry=self.reconnect)
            return
        await self.reload()

    def _subscribe(self, event: str, handler: Callable[[Any], Awaitable[None]]) -> None:
        self._subscriptions.append(self.channel.subscribe(event, handler))

    @property
    def degraded(self) -> bool:
        """True while live updates may be missing."""
        return self.channel.degraded

    async def _on_connection_state(self, data: dict) -> None:
        state = data.get("state")
        logger.info(f"{self.surface}: connection {data.get('previous')} -> {state}")
        self._changed()
        if state == ConnectionState.CONNECTED.value and data.get("previous") == ConnectionState.DEGRADED.value:
            await self.reload()

    async def stop(self) -> None:
        """Cancel timers and drop subscriptions; the channel stays open for other surfaces."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        for task in timers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._started = False
        logger.info(f"{self.surface} controller stopped")

    async def reload(self) -> bool:
        raise NotImplementedError

    # ==========================================================================
    # CHANGE NOTIFICATION / NOTICES
    # ==========================================================================

    def on_change(self, callback: Callable[["SurfaceController"], None]) -> None:
        self._listeners.append(callback)

    def _changed(self) -> None:
        self.revision += 1
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception(f"{self.surface} change listener failed")

    def add_notice(
        self,
        level: str,
        message: str,
        retry: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> Notice:
        notice = Notice(level=level, message=message, retry=retry)
        self.notices.append(notice)
        log = logger.warning if level in ("warning", "error") else logger.info
        log(f"{self.surface} notice [{level}]: {message}")
        self._changed()
        return notice

    def dismiss_notice(self, notice_id: int) -> bool:
        before = len(self.notices)
        self.notices = [n for n in self.notices if n.id != notice_id]
        if len(self.notices) != before:
            self._changed()
            return True
        return False

    async def retry_notice(self, notice_id: int) -> Any:
        notice = next((n for n in self.notices if n.id == notice_id), None)
        if notice is None or notice.retry is None:
            return None
        self.dismiss_notice(notice_id)
        return await notice.retry()

    # ==========================================================================
    # TIMERS
    # ==========================================================================

    def _schedule(self, key: str, delay: float, callback: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Run callback after delay; a timer with the same key is replaced."""
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()

        async def run():
            await asyncio.sleep(max(delay, 0))
            if self._timers.get(key) is task:
                del self._timers[key]
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"{self.surface} timer {key} failed")

        task = asyncio.get_running_loop().create_task(run())
        self._timers[key] = task
        return task

    def _cancel_timer(self, key: str) -> None:
        task = self._timers.pop(key, None)
        if task is not None:
            task.cancel()

    @property
    def pending_timers(self) -> List[str]:
        return sorted(self._timers)


# =============================================================================
# STAFF BOARD (kitchen + admin)
# =============================================================================

class OrderBoardController(SurfaceController):
    """
    Active and completed order lists kept in sync with pushes.

    The lists are disjoint. A finished order stays in the active list for
    completed_display_delay_seconds so staff see the transition, then moves.
    """

    room = ""
    alert_statuses = (OrderStatus.READY,)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active: Dict[int, Order] = {}
        self.completed: Dict[int, Order] = {}
        self.loading = False

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._subscribe(Events.NEW_ORDER, self._on_new_order)
        self._subscribe(Events.ORDER_STATUS_UPDATE, self._on_status_update)
        self._subscribe(Events.ORDER_COMPLETED, self._on_order_completed)
        self._subscribe(Events.ORDER_CANCELLED, self._on_order_cancelled)
        self._subscribe(Events.ORDER_DELETED, self._on_order_deleted)
        self._subscribe(Events.NEW_ITEMS_ADDED, self._on_new_items)
        self._subscribe(Events.CONNECTION_STATE, self._on_connection_state)
        await self._connect_channel()
        await self.channel.join(self.room)
        await self.reload()
        logger.info(f"{self.surface} controller started ({len(self.active)} active orders)")

    async def stop(self) -> None:
        await self.channel.leave(self.room)
        await super().stop()

    async def _fetch_orders(self) -> List[Order]:
        raise NotImplementedError

    def _visible(self, order: Order) -> bool:
        return True

    async def reload(self) -> bool:
        """Full reload from the backend; push is only a freshness hint."""
        self.loading = True
        try:
            orders = await self._fetch_orders()
        except (TransportError, DataIntegrityError) as e:
            self.add_notice("error", f"Failed to load orders: {e}", retry=self.reload)
            return False
        finally:
            self.loading = False

        seen = set()
        for order in orders:
            if not self._visible(order):
                continue
            seen.add(order.id)
            self._apply_snapshot(order, settle=True)

        for order_id in [i for i in list(self.active) + list(self.completed) if i not in seen]:
            self._remove(order_id)

        self._changed()
        return True

    # ==========================================================================
    # STATE
    # ==========================================================================

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.active.get(order_id) or self.completed.get(order_id)

    def all_orders(self) -> List[Order]:
        return list(self.active.values()) + list(self.completed.values())

    def stats(self) -> OrderStats:
        return OrderStats.from_orders(self.all_orders())

    def _store(self, order: Order, settle: bool = False) -> None:
        """Place an order in the right list; finished orders move after the grace delay."""
        if order.is_terminal:
            if order.id in self.completed or settle or order.id not in self.active:
                self.active.pop(order.id, None)
                self.completed[order.id] = order
                self._cancel_timer(f"settle:{order.id}")
                return
            self.active[order.id] = order
            self._schedule(
                f"settle:{order.id}",
                self.settings.completed_display_delay_seconds,
                lambda: self._settle(order.id),
            )
        else:
            self.completed.pop(order.id, None)
            self.active[order.id] = order

    async def _settle(self, order_id: int) -> None:
        order = self.active.get(order_id)
        if order is not None and order.is_terminal:
            del self.active[order_id]
            self.completed[order_id] = order
            logger.debug(f"{self.surface}: order {order_id} moved to completed")
            self._changed()

    def _remove(self, order_id: int) -> Optional[Order]:
        self._cancel_timer(f"settle:{order_id}")
        self.guard.forget(order_id)
        return self.active.pop(order_id, None) or self.completed.pop(order_id, None)

    def _apply_snapshot(self, order: Order, timestamp: Optional[datetime] = None, settle: bool = False) -> bool:
        """Apply a full order from the backend through the timestamp guard."""
        stamp = timestamp or order.updated_at
        current = self.get_order(order.id)
        if not self.guard.accepts(order.id, stamp, order.status, current.status if current else None):
            logger.info(
                f"{self.surface}: ignored stale snapshot of order {order.id} "
                f"({order.status.value} @ {stamp})"
            )
            return False
        self.guard.record(order.id, stamp)
        self._store(order, settle=settle)
        return True

    def _apply_status(self, order_id: int, status: OrderStatus, timestamp: Optional[datetime]) -> bool:
        current = self.get_order(order_id)
        if current is None:
            return False
        if not self.guard.accepts(order_id, timestamp, status, current.status):
            logger.info(
                f"{self.surface}: dropped stale status {status.value} for order {order_id} "
                f"(have {current.status.value})"
            )
            return False
        self.guard.record(order_id, timestamp)
        if current.status == status:
            return True
        updated = current.model_copy(update={"status": status, "updated_at": timestamp or current.updated_at})
        self._store(updated)
        return True

    # ==========================================================================
    # MUTATIONS
    # ==========================================================================

    def _require(self, order_id: int) -> Order:
        order = self.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def blocking_orders(self, order_id: int) -> List[Order]:
        order = self._require(order_id)
        return transition_policy.can_complete(order, self.all_orders()).blocking_orders

    def _shows_partial_board(self) -> bool:
        """True when filters may keep sibling orders off this board."""
        return False

    async def _completion_candidates(self, order: Order) -> List[Order]:
        """Orders the sibling guard checks; a partial board asks the backend for the table."""
        candidates = {o.id: o for o in self.all_orders()}
        if self._shows_partial_board() and order.table_number is not None:
            for other in await self.backend.get_orders_by_table(order.table_number):
                candidates.setdefault(other.id, other)
        return list(candidates.values())

    async def update_status(self, order_id: int, status: OrderStatus) -> Order:
        """
        Guarded status change.

        Policy checks run before any backend call; the response is applied
        through the timestamp guard so it cannot undo a newer push.

        Raises:
            OrderNotFoundError: Order not on this board
            InvalidTransitionError: Edge not in the status graph
            CompletionBlockedError: Customer has other active orders
            TransportError: Backend unreachable (a retry notice is added)
        """
        status = OrderStatus(status)
        order = self._require(order_id)
        transition_policy.ensure_transition(order.status, status)

        issued_at = self.clock()
        try:
            if status == OrderStatus.COMPLETED:
                transition_policy.ensure_can_complete(order, await self._completion_candidates(order))
            updated = await self.backend.update_order_status(order_id, status)
        except TransportError as e:
            self.add_notice(
                "error",
                f"Could not update order {order.display_number}: {e}",
                retry=lambda: self.update_status(order_id, status),
            )
            raise
        except CompletionBlockedError as e:
            names = ", ".join(o.display_number for o in e.blocking_orders)
            self.add_notice("warning", f"{e.message} ({names})" if names else e.message)
            raise
        except OrderNotFoundError:
            self._remove(order_id)
            self._changed()
            raise
        except BackendError as e:
            self.add_notice("error", f"Order {order.display_number} was not updated: {e.detail}")
            raise

        self._apply_snapshot(updated, timestamp=updated.updated_at or issued_at)
        self._changed()
        return self.get_order(order_id) or updated

    # ==========================================================================
    # PUSH HANDLERS
    # ==========================================================================

    async def _refresh_order(self, order_id: int) -> None:
        try:
            order = await self.backend.get_order_by_id(order_id)
        except OrderNotFoundError:
            if self._remove(order_id) is not None:
                self._changed()
            return
        except (TransportError, DataIntegrityError) as e:
            logger.warning(f"{self.surface}: could not refresh order {order_id}: {e}")
            return
        if self._visible(order) and self._apply_snapshot(order):
            self._changed()

    async def _on_new_order(self, data: dict) -> None:
        try:
            order = parse_new_order_event(data)
        except ValidationError as e:
            logger.warning(f"{self.surface}: malformed new-order event: {e}")
            return
        if not self._visible(order):
            return
        known = self.get_order(order.id) is not None
        if self._apply_snapshot(order):
            self._changed()
        if not known:
            self.channel.notify(
                AlertKind.NOTIFICATION,
                "New Order Received!",
                f"Order #{order.order_number} from Table {order.table_number}",
            )

    async def _on_status_update(self, data: dict) -> None:
        try:
            event = OrderStatusUpdateEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"{self.surface}: malformed status event: {e}")
            return
        if self.get_order(event.order_id) is None:
            await self._refresh_order(event.order_id)
            return
        if self._apply_status(event.order_id, event.status, event.timestamp):
            self._changed()
            if event.status in self.alert_statuses:
                order = self.get_order(event.order_id)
                self.channel.notify(
                    AlertKind.COMPLETION,
                    f"Order {event.status.value.title()}",
                    f"Order {order.display_number} is {event.status.value}!",
                )

    async def _on_order_completed(self, data: dict) -> None:
        try:
            event = OrderCompletedEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"{self.surface}: malformed order-completed event: {e}")
            return
        if self._apply_status(event.order_id, OrderStatus.COMPLETED, event.timestamp):
            self._changed()

    async def _on_order_cancelled(self, data: dict) -> None:
        try:
            event = OrderCancelledEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"{self.surface}: malformed order-cancelled event: {e}")
            return
        if self._apply_status(event.order_id, OrderStatus.CANCELLED, event.timestamp):
            self._changed()

    async def _on_order_deleted(self, data: dict) -> None:
        try:
            event = OrderDeletedEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"{self.surface}: malformed order-deleted event: {e}")
            return
        if self._remove(event.order_id) is not None:
            logger.info(f"{self.surface}: order {event.order_id} deleted")
            self._changed()

    async def _on_new_items(self, data: dict) -> None:
        try:
            event = NewItemsAddedEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"{self.surface}: malformed new-items-added event: {e}")
            return
        await self._refresh_order(event.order_id)
        self.channel.notify(
            AlertKind.NOTIFICATION,
            "New Items Added",
            f"Order #{event.order_id} has new items",
        )
