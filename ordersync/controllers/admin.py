"""
Admin Dashboard Controller

Order management for staff:
- Joins the "admin" room; orders come from the search endpoint so the
  dashboard filters (status, table, date range, text) apply server side
- Selection and bulk status changes, validated before any backend call
- Order details with merged items grouped by ordering session
- Notification feed: new orders, ready and completed orders

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from ordersync.controllers.base import OrderBoardController
from ordersync.core.exceptions import (
    BackendError,
    CompletionBlockedError,
    InvalidSelectionError,
    OrderNotFoundError,
    TransportError,
)
from ordersync.schemas import Order, OrderItem, OrderSearchFilters, OrderStatus, Table
from ordersync.services import merge_tracker, transition_policy
from ordersync.services.realtime.base import Room

logger = logging.getLogger(__name__)


@dataclass
class OrderDetails:
    """Everything the order details panel shows."""
    order: Order
    items: List[OrderItem]
    sessions: List[merge_tracker.OrderingSession]
    is_merged: bool
    new_count: int
    blocking_orders: List[Order] = field(default_factory=list)


class AdminController(OrderBoardController):
    """Admin surface over the shared order board."""

    surface = "admin"
    room = Room.ADMIN
    alert_statuses = (OrderStatus.READY, OrderStatus.COMPLETED)

    def __init__(self, *args, filters: Optional[OrderSearchFilters] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.filters = filters or OrderSearchFilters()
        self.tables: List[Table] = []
        self.selected: Set[int] = set()
        self._hidden: Set[int] = set()

    # ==========================================================================
    # LOADING
    # ==========================================================================

    async def _fetch_orders(self) -> List[Order]:
        orders = await self.backend.search_orders(self.filters)
        try:
            self.tables = await self.backend.fetch_tables()
        except TransportError as e:
            logger.warning(f"Admin: table list unavailable: {e}")
        return orders

    def _shows_partial_board(self) -> bool:
        return bool(self.filters.as_params()) or bool(self._hidden)

    def _visible(self, order: Order) -> bool:
        if order.id in self._hidden:
            return False
        if self.filters.table_id and order.table_id != self.filters.table_id:
            return False
        if self.filters.query:
            needle = self.filters.query.lower()
            if needle not in order.customer_name.lower() and needle not in order.order_number.lower():
                return False
        return True

    async def set_filters(self, filters: Optional[OrderSearchFilters] = None, **changes) -> bool:
        """Replace or patch the search filters and reload."""
        base = filters or self.filters
        self.filters = base.model_copy(update=changes) if changes else base
        self.selected.clear()
        logger.info(f"Admin: filters {self.filters.as_params() or 'cleared'}")
        return await self.reload()

    def filtered_orders(self) -> List[Order]:
        """Orders matching the status filter, newest first."""
        orders = self.all_orders()
        if self.filters.status is not None:
            orders = [o for o in orders if o.status == self.filters.status]
        return sorted(
            orders,
            key=lambda o: (o.created_at.timestamp() if o.created_at else 0.0, o.id),
            reverse=True,
        )

    async def reload(self) -> bool:
        loaded = await super().reload()
        self.selected &= {i for i, o in self.active.items() if o.is_active}
        return loaded

    # ==========================================================================
    # SELECTION
    # ==========================================================================

    def _selectable(self, order_id: int) -> Order:
        order = self._require(order_id)
        if order.is_terminal:
            raise InvalidSelectionError(
                f"Order {order.display_number} is {order.status.value} and cannot be selected"
            )
        return order

    def select(self, order_id: int) -> None:
        self._selectable(order_id)
        self.selected.add(order_id)
        self._changed()

    def toggle(self, order_id: int) -> bool:
        """Toggle selection; returns True when the order ends up selected."""
        if order_id in self.selected:
            self.selected.discard(order_id)
            self._changed()
            return False
        self.select(order_id)
        return True

    def select_all_active(self) -> int:
        self.selected = {o.id for o in self.filtered_orders() if o.is_active}
        self._changed()
        return len(self.selected)

    def clear_selection(self) -> None:
        self.selected.clear()
        self._changed()

    # ==========================================================================
    # MUTATIONS
    # ==========================================================================

    async def _validate_bulk(self, order_ids: List[int], status: OrderStatus) -> List[Order]:
        if not order_ids:
            raise InvalidSelectionError("No orders selected")
        orders = [self._selectable(order_id) for order_id in order_ids]
        for order in orders:
            transition_policy.ensure_transition(order.status, status)

        if status == OrderStatus.COMPLETED:
            batch = set(order_ids)
            for order in orders:
                candidates = await self._completion_candidates(order)
                transition_policy.ensure_can_complete(order, [o for o in candidates if o.id not in batch])
        return orders

    async def bulk_update_status(self, status: OrderStatus, order_ids: Optional[Iterable[int]] = None) -> List[Order]:
        """
        Change the status of several orders at once.

        Every order is checked first; one violation refuses the whole batch.
        Orders completed in the same batch do not block each other.

        Args:
            status: Target status
            order_ids: Orders to update (defaults to the current selection)

        Raises:
            InvalidSelectionError: Empty selection or finished orders selected
            InvalidTransitionError: Some order cannot move to the target status
            CompletionBlockedError: A customer has active orders outside the batch
        """
        status = OrderStatus(status)
        ids = sorted(set(order_ids if order_ids is not None else self.selected))
        issued_at = self.clock()
        try:
            await self._validate_bulk(ids, status)
            updated = await self.backend.bulk_update_order_status(ids, status)
        except TransportError as e:
            self.add_notice(
                "error",
                f"Bulk update of {len(ids)} order(s) failed: {e}",
                retry=lambda: self.bulk_update_status(status, ids),
            )
            raise
        except (BackendError, CompletionBlockedError) as e:
            self.add_notice("error", f"Bulk update refused: {e.message}")
            raise

        for order in updated:
            self._apply_snapshot(order, timestamp=order.updated_at or issued_at)
        self.selected.difference_update(ids)
        self.add_notice("success", f"{len(updated)} order(s) updated to {status.value}")
        logger.info(f"Admin: bulk update of {ids} to {status.value}")
        return updated

    async def delete_order(self, order_id: int) -> Optional[Order]:
        order = self._require(order_id)
        try:
            deleted = await self.backend.delete_order(order_id)
        except OrderNotFoundError:
            deleted = None
        except TransportError as e:
            self.add_notice(
                "error",
                f"Could not delete order {order.display_number}: {e}",
                retry=lambda: self.delete_order(order_id),
            )
            raise
        self._remove(order_id)
        self.selected.discard(order_id)
        self.add_notice("success", f"Order {order.display_number} deleted")
        return deleted

    def clear_completed_from_screen(self) -> int:
        """Hide finished orders locally; they stay hidden across reloads."""
        finished = [o.id for o in self.all_orders() if o.is_terminal]
        for order_id in finished:
            self._hidden.add(order_id)
            self._remove(order_id)
        self._changed()
        logger.info(f"Admin: cleared {len(finished)} finished order(s) from screen")
        return len(finished)

    # ==========================================================================
    # DETAILS
    # ==========================================================================

    def order_details(self, order_id: int) -> OrderDetails:
        order = self._require(order_id)
        now = self.clock()
        threshold = self.settings.new_item_threshold_minutes
        gap = self.settings.session_gap_minutes
        return OrderDetails(
            order=order,
            items=merge_tracker.sort_by_newness(order.items, now, threshold),
            sessions=merge_tracker.group_by_session(order.items, gap),
            is_merged=merge_tracker.has_multiple_sessions(order.items, gap),
            new_count=sum(1 for item in order.items if merge_tracker.is_new(item, now, threshold)),
            blocking_orders=self.blocking_orders(order_id) if order.is_active else [],
        )
