"""
Customer Surface Controller

Drives what a diner sees after scanning the table QR code:
- Resolves the table from a table number or QR code
- Restores the saved session (cart, name, tracked order) with a welcome back
- Places orders; a second order by the same name while one is active is
  merged into it by the backend and announced as "items added"
- Tracks the customer's orders live through the table and customer rooms
- Fresh start once everything is completed, the tracked order is deleted,
  or a cancellation has been on screen for the cooldown period

View selection goes through the view_state reducer so automatic promotion
to tracking never fights a manual "continue ordering".

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from ordersync.controllers import view_state
from ordersync.controllers.base import SurfaceController
from ordersync.controllers.view_state import Announcement, View, ViewState
from ordersync.core.config import Settings
from ordersync.core.exceptions import (
    BackendError,
    DataIntegrityError,
    OrderNotFoundError,
    PolicyViolationError,
    TableNotFoundError,
    TransportError,
)
from ordersync.schemas import (
    CreateOrderPayload,
    CreateOrderResult,
    NewItemsAddedEvent,
    Order,
    OrderCancelledEvent,
    OrderCompletedEvent,
    OrderDeletedEvent,
    OrderStatus,
    OrderStatusUpdateEvent,
    Session,
    Table,
    parse_new_order_event,
    utcnow,
)
from ordersync.services.alerts.base import AlertKind
from ordersync.services.backend.base import BaseOrderBackend
from ordersync.services.realtime.base import BaseRealtimeChannel, Events, Room
from ordersync.services.sessions import cart as cart_ops
from ordersync.services.sessions.repository import SessionRepository, session_key, table_of

logger = logging.getLogger(__name__)


_ANNOUNCEMENTS = {
    Announcement.ORDER_PLACED: "Order {number} placed! We'll keep you posted.",
    Announcement.ITEMS_ADDED: "Items added to your order {number}.",
    Announcement.FRESH_START: "All done! You can start a new order.",
    Announcement.ORDER_GONE: "Your order {number} was removed by staff.",
}

_STATUS_MESSAGES = {
    OrderStatus.PREPARING: "Order {number} is being prepared",
    OrderStatus.READY: "Order {number} is ready!",
    OrderStatus.COMPLETED: "Order {number} is completed. Enjoy!",
    OrderStatus.CANCELLED: "Order {number} was cancelled",
}


def _same_name(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


class CustomerController(SurfaceController):
    """
    Customer surface for one table.

    Args:
        identifier: Table number ("12", "table-12") or QR code from the URL
        backend: Ordering REST API
        channel: Realtime channel
        repository: Session repository for cart and tracked order
        settings: Application settings
        clock: Returns the current aware datetime
    """

    surface = "customer"

    def __init__(
        self,
        identifier: str,
        backend: BaseOrderBackend,
        channel: BaseRealtimeChannel,
        repository: SessionRepository,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(backend, channel, settings, clock)
        self.identifier = str(identifier)
        self.repository = repository
        self.table: Optional[Table] = None
        self.table_fallback = False
        self.session = Session(key=session_key(self.identifier))
        self.orders: Dict[int, Order] = {}
        self.state = ViewState()

    # ==========================================================================
    # PROPERTIES
    # ==========================================================================

    @property
    def session_id(self) -> str:
        if self.table is not None:
            return str(self.table.table_number)
        return self.identifier

    @property
    def view(self) -> View:
        return self.state.view

    @property
    def current_order(self) -> Optional[Order]:
        if self.session.order_id is None:
            return None
        return self.orders.get(self.session.order_id)

    def active_orders(self) -> List[Order]:
        return [o for o in self.orders.values() if o.is_active]

    def tracked_orders(self) -> List[Order]:
        """Tracked orders, newest first."""
        return sorted(
            self.orders.values(),
            key=lambda o: (o.created_at.timestamp() if o.created_at else 0.0, o.id),
            reverse=True,
        )

    @property
    def cart_total(self) -> float:
        return cart_ops.cart_total(self.session.cart)

    @property
    def cart_count(self) -> int:
        return cart_ops.cart_item_count(self.session.cart)

    # ==========================================================================
    # VIEW STATE
    # ==========================================================================

    def _dispatch(self, action: view_state.Action, number: Optional[str] = None) -> ViewState:
        previous = self.state.view
        self.state = view_state.reduce(self.state, action, self.settings.manual_menu_grace_seconds)
        if self.state.view != previous:
            logger.info(f"Customer table {self.session_id}: view {previous.value} -> {self.state.view.value}")
        announcement = self.state.announcement
        if announcement is not None:
            self.add_notice("success", _ANNOUNCEMENTS[announcement].format(number=number or ""))
        else:
            self._changed()
        return self.state

    def open_cart(self) -> None:
        self._dispatch(view_state.OpenCart())

    def open_menu(self) -> None:
        self._dispatch(view_state.OpenMenu())

    def continue_ordering(self) -> None:
        """Back to the menu without being pulled into tracking for the grace period."""
        self._dispatch(view_state.ContinueOrdering(now=self.clock()))
        self._schedule(
            "menu-grace",
            self.settings.manual_menu_grace_seconds,
            self._end_menu_grace,
        )

    async def _end_menu_grace(self) -> None:
        self._dispatch(view_state.Tick(now=self.clock()))

    def _active_count_changed(self) -> None:
        self._dispatch(view_state.ActiveOrdersChanged(count=len(self.active_orders()), now=self.clock()))

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def _resolve_table(self) -> Optional[Table]:
        number = table_of(session_key(self.identifier))
        if number is None:
            return await self.backend.get_table_by_qr_code(self.identifier)
        for table in await self.backend.fetch_tables():
            if table.table_number == int(number):
                return table
        raise TableNotFoundError(self.identifier)

    async def start(self) -> bool:
        """
        Resolve the table, restore the session and start live tracking.

        Returns:
            False when the table could not be resolved; the menu is shown
            without ordering and a notice explains why
        """
        if self._started:
            return True

        try:
            self.table = await self._resolve_table()
        except TableNotFoundError as e:
            self.table_fallback = True
            self.state = ViewState(view=View.MENU)
            self.add_notice("error", f"{e.message}. Please scan the QR code on your table again.")
            return False
        except TransportError as e:
            self.add_notice("error", f"Could not reach the restaurant: {e}", retry=self.start)
            return False

        self._started = True
        self._subscribe(Events.NEW_ORDER, self._on_new_order)
        self._subscribe(Events.ORDER_STATUS_UPDATE, self._on_status_update)
        self._subscribe(Events.ORDER_COMPLETED, self._on_order_completed)
        self._subscribe(Events.ORDER_CANCELLED, self._on_order_cancelled)
        self._subscribe(Events.ORDER_DELETED, self._on_order_deleted)
        self._subscribe(Events.NEW_ITEMS_ADDED, self._on_new_items)
        self._subscribe(Events.CONNECTION_STATE, self._on_connection_state)

        self.session = await self.repository.get(self.session_id)
        if not self.session.is_empty:
            name = f", {self.session.customer_name}" if self.session.customer_name else ""
            self.add_notice("info", f"Welcome back{name}!")

        try:
            await self._load_orders()
        except (TransportError, DataIntegrityError) as e:
            self.add_notice("error", f"Failed to load your orders: {e}", retry=self.reload)
        await self._resume()

        self.state = view_state.reduce(
            self.state,
            view_state.Loaded(
                has_order=self.current_order is not None,
                cart_count=self.cart_count,
                active_orders=len(self.active_orders()),
            ),
        )

        await self._connect_channel()
        await self.channel.join(Room.table(self.table.table_number))
        if self.session.order_id is not None:
            await self.channel.join(Room.customer(self.session.order_id))

        logger.info(
            f"Customer surface ready for table {self.table.table_number} "
            f"(view={self.view.value}, cart={self.cart_count}, orders={len(self.orders)})"
        )
        self._changed()
        return True

    async def stop(self) -> None:
        if self.table is not None:
            await self.channel.leave(Room.table(self.table.table_number))
        for order_id in list(self.orders):
            await self.channel.leave(Room.customer(order_id))
        await super().stop()

    async def _load_orders(self) -> None:
        """Fetch this customer's orders at the table through the timestamp guard."""
        orders = await self.backend.get_orders_by_table(self.table.table_number)
        tracked = {}
        for order in orders:
            if order.id == self.session.order_id or (
                order.is_active and _same_name(order.customer_name, self.session.customer_name)
            ):
                tracked[order.id] = order

        for order_id in [i for i in self.orders if i not in tracked]:
            del self.orders[order_id]
            self.guard.forget(order_id)
        for order in tracked.values():
            self._apply_snapshot(order)

    async def _resume(self) -> None:
        """Decide what to do with the order remembered in the session."""
        order_id = self.session.order_id
        if order_id is None:
            return

        current = self.orders.get(order_id)
        if current is None:
            try:
                current = await self.backend.get_order_by_id(order_id)
            except OrderNotFoundError:
                logger.info(f"Tracked order {order_id} no longer exists, forgetting it")
                self.session = await self.repository.set_current_order(self.session_id, None)
                return
            except TransportError as e:
                logger.warning(f"Could not verify tracked order {order_id}: {e}")
                return
            self._apply_snapshot(current)

        if current.is_terminal:
            await self._after_finished(current)

    async def reload(self) -> bool:
        if self.table is None:
            return False
        try:
            await self._load_orders()
        except (TransportError, DataIntegrityError) as e:
            self.add_notice("error", f"Failed to load your orders: {e}", retry=self.reload)
            return False
        current = self.current_order
        if current is not None and current.is_terminal:
            await self._after_finished(current)
        else:
            self._active_count_changed()
        return True

    # ==========================================================================
    # CART / SESSION
    # ==========================================================================

    async def _save_cart(self, cart) -> Session:
        self.session = await self.repository.set_cart(
            self.session_id, cart, expected_version=self.session.version
        )
        self._changed()
        return self.session

    async def add_item(
        self,
        menu_item_id: int,
        name: str,
        price: float,
        quantity: int = 1,
        special_requests: Optional[str] = None,
    ) -> Session:
        cart = cart_ops.add_to_cart(self.session.cart, menu_item_id, name, price, quantity, special_requests)
        return await self._save_cart(cart)

    async def remove_item(self, menu_item_id: int) -> Session:
        return await self._save_cart(cart_ops.remove_from_cart(self.session.cart, menu_item_id))

    async def set_quantity(self, menu_item_id: int, quantity: int) -> Session:
        return await self._save_cart(cart_ops.update_quantity(self.session.cart, menu_item_id, quantity))

    async def set_customer_name(self, name: Optional[str]) -> Session:
        self.session = await self.repository.set_customer(
            self.session_id, name, expected_version=self.session.version
        )
        self._changed()
        return self.session

    async def set_special_instructions(self, text: Optional[str]) -> Session:
        self.session = await self.repository.set_instructions(
            self.session_id, text, expected_version=self.session.version
        )
        self._changed()
        return self.session

    # ==========================================================================
    # ORDERING
    # ==========================================================================

    async def place_order(self, customer_name: Optional[str] = None) -> CreateOrderResult:
        """
        Submit the cart.

        Raises:
            PolicyViolationError: No table, no name or an empty cart
            TransportError: Backend unreachable (a retry notice is added)
        """
        if self.table is None:
            raise PolicyViolationError("No table resolved; scan the QR code on your table")
        if customer_name is not None:
            await self.set_customer_name(customer_name)
        if not self.session.customer_name:
            raise PolicyViolationError("Please enter your name")
        if not self.session.cart:
            raise PolicyViolationError("Your cart is empty")

        payload = CreateOrderPayload(
            table_id=self.table.id,
            customer_name=self.session.customer_name,
            special_instructions=self.session.special_instructions,
            items=cart_ops.to_order_items(self.session.cart),
        )
        try:
            result = await self.backend.create_order(payload)
        except TransportError as e:
            self.add_notice("error", f"Order not sent: {e}", retry=self.place_order)
            raise
        except BackendError as e:
            self.add_notice("error", f"Order refused: {e.detail}")
            raise

        order = result.order
        self._apply_snapshot(order)
        self.session = await self.repository.set_cart(self.session_id, [])
        self.session = await self.repository.set_instructions(self.session_id, None)
        self.session = await self.repository.set_current_order(self.session_id, order.id, order.order_number)
        await self.repository.clear_cancelled_marker(self.session_id)
        self._cancel_timer("cooldown")
        await self.channel.join(Room.customer(order.id))

        logger.info(
            f"Customer table {self.table.table_number}: order {order.display_number} "
            f"{'merged' if result.merged else 'placed'} ({len(order.items)} items, {order.total_amount:.2f})"
        )
        self._dispatch(view_state.OrderPlaced(merged=result.merged), number=order.display_number)
        return result

    # ==========================================================================
    # STATE CHANGES
    # ==========================================================================

    def _apply_snapshot(self, order: Order) -> bool:
        current = self.orders.get(order.id)
        if not self.guard.accepts(order.id, order.updated_at, order.status, current.status if current else None):
            logger.info(f"Customer: ignored stale copy of order {order.id} ({order.status.value})")
            return False
        self.guard.record(order.id, order.updated_at)
        self.orders[order.id] = order
        return True

    def _apply_status(self, order_id: int, status: OrderStatus, timestamp: Optional[datetime]) -> Optional[Order]:
        current = self.orders.get(order_id)
        if current is None:
            return None
        if not self.guard.accepts(order_id, timestamp, status, current.status):
            logger.info(f"Customer: dropped stale status {status.value} for order {order_id}")
            return None
        self.guard.record(order_id, timestamp)
        if current.status == status:
            return None
        updated = current.model_copy(update={"status": status, "updated_at": timestamp or current.updated_at})
        self.orders[order_id] = updated
        return updated

    def _schedule_cooldown(self, delay: float) -> None:
        self._schedule("cooldown", delay, self.fresh_start)

    async def _after_finished(self, order: Order) -> None:
        """An order became completed or cancelled."""
        active = self.active_orders()
        if order.status == OrderStatus.CANCELLED and order.id == self.session.order_id and not active:
            marker = await self.repository.get_cancelled_marker(self.session_id)
            if marker is None or marker.order_id != order.id:
                marker = await self.repository.mark_cancelled(self.session_id, order.id)
            self._schedule_cooldown(self.repository.cooldown_remaining(marker))
            self._changed()
            return

        if not active:
            await self.fresh_start()
            return

        if order.id == self.session.order_id:
            newest = max(active, key=lambda o: (o.created_at.timestamp() if o.created_at else 0.0, o.id))
            self.session = await self.repository.set_current_order(self.session_id, newest.id, newest.order_number)
        self._active_count_changed()

    async def _status_changed(self, order: Order) -> None:
        message = _STATUS_MESSAGES.get(order.status)
        if message is not None:
            self.add_notice("info", message.format(number=order.display_number))
        if order.status == OrderStatus.READY:
            self.channel.notify(
                AlertKind.COMPLETION,
                "Order Ready!",
                f"Your order {order.display_number} is ready",
            )
        if order.is_terminal:
            await self._after_finished(order)
        else:
            self._active_count_changed()

    async def fresh_start(self) -> None:
        """Forget everything kept for this table and go back to the menu."""
        self._cancel_timer("cooldown")
        await self.repository.clear(self.session_id)
        for order_id in list(self.orders):
            await self.channel.leave(Room.customer(order_id))
        self.orders.clear()
        self.guard.clear()
        self.session = Session(key=session_key(self.session_id))
        logger.info(f"Customer table {self.session_id}: fresh start")
        self._dispatch(view_state.FreshStart())

    # ==========================================================================
    # PUSH HANDLERS
    # ==========================================================================

    async def _on_status_update(self, data: dict) -> None:
        try:
            event = OrderStatusUpdateEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Customer: malformed status event: {e}")
            return
        updated = self._apply_status(event.order_id, event.status, event.timestamp)
        if updated is not None:
            await self._status_changed(updated)

    async def _on_order_completed(self, data: dict) -> None:
        try:
            event = OrderCompletedEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Customer: malformed order-completed event: {e}")
            return
        updated = self._apply_status(event.order_id, OrderStatus.COMPLETED, event.timestamp)
        if updated is not None:
            await self._status_changed(updated)

    async def _on_order_cancelled(self, data: dict) -> None:
        try:
            event = OrderCancelledEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Customer: malformed order-cancelled event: {e}")
            return
        updated = self._apply_status(event.order_id, OrderStatus.CANCELLED, event.timestamp)
        if updated is not None:
            await self._status_changed(updated)

    async def _on_new_order(self, data: dict) -> None:
        try:
            order = parse_new_order_event(data)
        except ValidationError as e:
            logger.warning(f"Customer: malformed new-order event: {e}")
            return
        if self.table is None or order.table_number != self.table.table_number:
            return
        if order.id in self.orders or not _same_name(order.customer_name, self.session.customer_name):
            return
        if self._apply_snapshot(order):
            await self.channel.join(Room.customer(order.id))
            self._active_count_changed()

    async def _on_order_deleted(self, data: dict) -> None:
        try:
            event = OrderDeletedEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Customer: malformed order-deleted event: {e}")
            return
        order = self.orders.pop(event.order_id, None)
        if order is None:
            return
        self.guard.forget(order.id)
        await self.channel.leave(Room.customer(order.id))

        if order.id != self.session.order_id:
            self._active_count_changed()
            return

        remaining = self.active_orders()
        if remaining:
            newest = max(remaining, key=lambda o: (o.created_at.timestamp() if o.created_at else 0.0, o.id))
            self.session = await self.repository.set_current_order(self.session_id, newest.id, newest.order_number)
        else:
            self._cancel_timer("cooldown")
            await self.repository.clear(self.session_id)
            self.session = Session(key=session_key(self.session_id))
            self.orders.clear()
            self.guard.clear()
        logger.info(f"Customer table {self.session_id}: tracked order {order.display_number} deleted")
        self._dispatch(view_state.OrderGone(remaining=len(remaining)), number=order.display_number)

    async def _on_new_items(self, data: dict) -> None:
        try:
            event = NewItemsAddedEvent.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Customer: malformed new-items-added event: {e}")
            return
        if event.order_id not in self.orders:
            return
        try:
            order = await self.backend.get_order_by_id(event.order_id)
        except (OrderNotFoundError, TransportError) as e:
            logger.warning(f"Customer: could not refresh order {event.order_id}: {e}")
            return
        if self._apply_snapshot(order):
            self._changed()
