"""
Kitchen Display Controller

Live queue for the kitchen:
- Joins the "kitchen" room and keeps active/completed lists current
- Filter by status and sort (priority, time, table, customer, amount)
- One-click advance along pending -> preparing -> ready -> completed
- New-order and ready tones, toggled from the header

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import List, Optional, Union

from ordersync.controllers import queue
from ordersync.controllers.base import OrderBoardController
from ordersync.core.exceptions import InvalidTransitionError
from ordersync.schemas import Order, OrderStatus
from ordersync.services import merge_tracker, transition_policy
from ordersync.services.realtime.base import Room

logger = logging.getLogger(__name__)


class KitchenController(OrderBoardController):
    """Kitchen surface over the shared order board."""

    surface = "kitchen"
    room = Room.KITCHEN

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active_filter: str = queue.ALL
        self.sort_key: queue.SortKey = queue.SortKey.PRIORITY
        self.channel.sound_enabled = self.settings.sound_enabled

    async def _fetch_orders(self) -> List[Order]:
        return await self.backend.fetch_all_orders()

    # ==========================================================================
    # QUEUE VIEW
    # ==========================================================================

    def set_filter(self, active_filter: Union[str, OrderStatus, None]) -> None:
        if active_filter in (None, queue.ALL):
            self.active_filter = queue.ALL
        else:
            self.active_filter = OrderStatus(active_filter).value
        self._changed()

    def set_sort(self, sort_key: Union[str, queue.SortKey, None]) -> None:
        self.sort_key = queue.parse_sort_key(sort_key)
        self._changed()

    def visible_orders(
        self,
        active_filter: Union[str, OrderStatus, None] = None,
        sort_key: Union[str, queue.SortKey, None] = None,
    ) -> List[Order]:
        """Active orders as the queue shows them."""
        return queue.filter_and_sort(
            list(self.active.values()),
            active_filter if active_filter is not None else self.active_filter,
            sort_key if sort_key is not None else self.sort_key,
        )

    def is_merged(self, order: Order) -> bool:
        """Order received items in more than one ordering session."""
        return merge_tracker.has_multiple_sessions(order.items, self.settings.session_gap_minutes)

    def new_items(self, order: Order) -> list:
        now = self.clock()
        return [
            item for item in order.items
            if merge_tracker.is_new(item, now, self.settings.new_item_threshold_minutes)
        ]

    # ==========================================================================
    # ACTIONS
    # ==========================================================================

    async def advance(self, order_id: int) -> Order:
        """Move an order one step along the status flow."""
        order = self._require(order_id)
        target: Optional[OrderStatus] = transition_policy.next_status(order.status)
        if target is None:
            raise InvalidTransitionError(order.status, order.status)
        logger.info(f"Kitchen: advancing {order.display_number} {order.status.value} -> {target.value}")
        return await self.update_status(order_id, target)

    async def cancel(self, order_id: int) -> Order:
        return await self.update_status(order_id, OrderStatus.CANCELLED)

    def toggle_sound(self) -> bool:
        self.channel.sound_enabled = not self.channel.sound_enabled
        logger.info(f"Kitchen sound {'on' if self.channel.sound_enabled else 'off'}")
        self._changed()
        return self.channel.sound_enabled
