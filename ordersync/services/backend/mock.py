"""
Mock Order Backend

Simulates the ordering REST service for development and tests.
Orders live in memory; push events go to an InMemoryRealtimeHub with the
same room fan-out as the production push server.

Server rules reproduced here:
- Merge: an order for the same table and customer name while another of
  their orders is still active appends the items to that order
- Status changes follow the status graph; completion is refused while the
  customer has other active orders at the table
- Item created_at is set once and never rewritten

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import itertools
import logging
import random
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ordersync.core.exceptions import (
    BackendError,
    BackendUnavailableError,
    OrderNotFoundError,
    TableNotFoundError,
)
from ordersync.schemas import (
    CreateOrderPayload,
    CreateOrderResult,
    MergeInfo,
    Order,
    OrderItem,
    OrderSearchFilters,
    OrderStats,
    OrderStatus,
    Table,
    utcnow,
)
from ordersync.services import transition_policy
from ordersync.services.backend.base import BaseOrderBackend
from ordersync.services.realtime.base import Events, Room
from ordersync.services.realtime.mock import InMemoryRealtimeHub

logger = logging.getLogger(__name__)


DEFAULT_MENU: Dict[int, Tuple[str, float]] = {
    1: ("Butter Chicken", 16.99),
    2: ("Garlic Naan", 3.99),
    3: ("Vegetable Biryani", 14.49),
    4: ("Mango Lassi", 4.99),
    5: ("Samosa Chaat", 7.99),
    6: ("Palak Paneer", 13.99),
    7: ("Gulab Jamun", 5.49),
    8: ("Masala Chai", 2.99),
}


class MockOrderBackend(BaseOrderBackend):
    """In-memory order backend for development."""

    def __init__(
        self,
        hub: Optional[InMemoryRealtimeHub] = None,
        tables: int = 10,
        menu: Optional[Dict[int, Tuple[str, float]]] = None,
        clock: Callable[[], datetime] = utcnow,
        failure_rate: float = 0.0,
        latency: Tuple[float, float] = (0.0, 0.0),
    ):
        self.hub = hub
        self.menu = dict(menu or DEFAULT_MENU)
        self.clock = clock
        self.failure_rate = failure_rate
        self.latency = latency

        self.tables: Dict[int, Table] = {
            n: Table(id=n, table_number=n, qr_code=f"QR-T{n:02d}", capacity=4)
            for n in range(1, tables + 1)
        }
        self.orders: Dict[int, Order] = {}
        self.calls: List[str] = []
        self._order_ids = itertools.count(1)
        self._item_ids = itertools.count(1)
        logger.info(f"MockOrderBackend initialized ({tables} tables, failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    # ==========================================================================
    # SIMULATION
    # ==========================================================================

    async def _simulate(self, call: str) -> None:
        """Record the call, simulate latency and random transport failures."""
        self.calls.append(call)
        low, high = self.latency
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))
        if self.failure_rate and random.random() < self.failure_rate:
            logger.warning(f"Mock backend {call} failed (simulated)")
            raise BackendUnavailableError(f"Simulated failure in {call}")

    async def _emit(self, rooms: Iterable[str], event: str, data: dict) -> None:
        if self.hub is not None:
            await self.hub.emit(rooms, event, data)

    @staticmethod
    def _table_rooms(order: Order) -> List[str]:
        return [Room.table(order.table_number)] if order.table_number is not None else []

    async def _emit_status(self, order: Order) -> None:
        data = {
            "type": "status-update",
            "orderId": order.id,
            "status": order.status.value,
            "tableNumber": str(order.table_number) if order.table_number is not None else None,
            "estimatedTime": None,
            "timestamp": order.updated_at.isoformat(),
        }
        rooms = [Room.ADMIN, Room.KITCHEN, Room.customer(order.id)] + self._table_rooms(order)
        await self._emit(rooms, Events.ORDER_STATUS_UPDATE, data)

        if order.status == OrderStatus.COMPLETED:
            await self._emit(
                [Room.ADMIN, Room.KITCHEN] + self._table_rooms(order),
                Events.ORDER_COMPLETED,
                {"type": "order-completed", "orderId": order.id, "timestamp": data["timestamp"]},
            )
        elif order.status == OrderStatus.CANCELLED:
            await self._emit(
                [Room.ADMIN, Room.KITCHEN] + self._table_rooms(order),
                Events.ORDER_CANCELLED,
                {
                    "type": "order-cancelled",
                    "orderId": order.id,
                    "reason": "Order cancelled by staff",
                    "timestamp": data["timestamp"],
                },
            )

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    def _get(self, order_id: int) -> Order:
        order = self.orders.get(int(order_id))
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def _build_items(self, payload: CreateOrderPayload, now: datetime) -> List[OrderItem]:
        items = []
        for item in payload.items:
            if item.menu_item_id not in self.menu:
                raise BackendError(404, f"Menu item {item.menu_item_id} not found")
            name, price = self.menu[item.menu_item_id]
            items.append(OrderItem(
                id=next(self._item_ids),
                menu_item_id=item.menu_item_id,
                name=name,
                quantity=item.quantity,
                unit_price=price,
                special_instructions=item.special_requests,
                created_at=now,
            ))
        return items

    def _find_active_order(self, table_id: int, customer_name: str) -> Optional[Order]:
        candidates = [
            o for o in self.orders.values()
            if o.table_id == table_id and o.customer_name == customer_name and o.is_active
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda o: (o.created_at, o.id))

    def _siblings(self, order: Order) -> List[Order]:
        return [o for o in self.orders.values() if o.id != order.id]

    def seed_order(
        self,
        table_number: int,
        customer_name: str,
        items: Sequence[Tuple[int, int]],
        status: OrderStatus = OrderStatus.PENDING,
        created_at: Optional[datetime] = None,
    ) -> Order:
        """Insert an order directly (no events), for demos and tests."""
        table = self.tables[table_number]
        now = created_at or self.clock()
        payload = CreateOrderPayload(
            table_id=table.id,
            customer_name=customer_name,
            items=[{"menu_item_id": m, "quantity": q} for m, q in items],
        )
        order_items = self._build_items(payload, now)
        order_id = next(self._order_ids)
        order = Order(
            id=order_id,
            order_number=f"ORD{order_id:05d}",
            table_id=table.id,
            table_number=table.table_number,
            customer_name=customer_name,
            status=status,
            items=order_items,
            total_amount=round(sum(i.total_price for i in order_items), 2),
            created_at=now,
            updated_at=now,
        )
        self.orders[order.id] = order
        return order

    # ==========================================================================
    # MUTATIONS
    # ==========================================================================

    async def create_order(self, payload: CreateOrderPayload) -> CreateOrderResult:
        await self._simulate("create_order")

        table = next((t for t in self.tables.values() if t.id == payload.table_id and t.is_active), None)
        if table is None:
            raise TableNotFoundError(payload.table_id)

        now = self.clock()
        new_items = self._build_items(payload, now)
        existing = self._find_active_order(table.id, payload.customer_name)

        if existing is not None:
            items = existing.items + new_items
            merged = existing.model_copy(update={
                "items": items,
                "total_amount": round(sum(i.total_price for i in items), 2),
                "updated_at": now,
            })
            self.orders[merged.id] = merged
            logger.info(f"Mock: {len(new_items)} item(s) added to order {merged.order_number}")

            await self._emit_status(merged)
            await self._emit(
                [Room.KITCHEN, Room.ADMIN] + self._table_rooms(merged),
                Events.NEW_ITEMS_ADDED,
                {
                    "type": "new-items-added",
                    "orderId": merged.id,
                    "tableNumber": str(merged.table_number),
                    "newItems": [i.model_dump(mode="json") for i in new_items],
                    "timestamp": now.isoformat(),
                },
            )
            return CreateOrderResult(
                order=merged,
                merged=True,
                merge_info=MergeInfo(
                    original_order_id=merged.id,
                    original_order_number=merged.order_number,
                    items_added=len(new_items),
                    new_total=merged.total_amount,
                ),
            )

        order_id = next(self._order_ids)
        order = Order(
            id=order_id,
            order_number=f"ORD{order_id:05d}",
            table_id=table.id,
            table_number=table.table_number,
            customer_name=payload.customer_name,
            status=OrderStatus.PENDING,
            items=new_items,
            total_amount=round(sum(i.total_price for i in new_items), 2),
            special_instructions=payload.special_instructions,
            created_at=now,
            updated_at=now,
        )
        self.orders[order.id] = order
        logger.info(f"Mock: order {order.order_number} created for table {table.table_number}")

        await self._emit(
            [Room.ADMIN, Room.KITCHEN] + self._table_rooms(order),
            Events.NEW_ORDER,
            order.model_dump(mode="json"),
        )
        return CreateOrderResult(order=order, merged=False)

    async def update_order_status(self, order_id: int, status: OrderStatus) -> Order:
        await self._simulate("update_order_status")
        status = OrderStatus(status)
        order = self._get(order_id)

        if not transition_policy.can_transition(order.status, status):
            raise BackendError(
                400,
                f'Cannot change status from "{order.status.value}" to "{status.value}". Invalid transition.',
            )
        if status == OrderStatus.COMPLETED:
            transition_policy.ensure_can_complete(order, self._siblings(order))

        updated = order.model_copy(update={"status": status, "updated_at": self.clock()})
        self.orders[updated.id] = updated
        logger.info(f"Mock: order {updated.order_number} {order.status.value} -> {status.value}")
        await self._emit_status(updated)
        return updated

    async def bulk_update_order_status(self, order_ids: Sequence[int], status: OrderStatus) -> List[Order]:
        await self._simulate("bulk_update_order_status")
        if not order_ids:
            raise BackendError(400, "Order IDs array is required")
        status = OrderStatus(status)
        orders = [self._get(order_id) for order_id in order_ids]
        for order in orders:
            if not transition_policy.can_transition(order.status, status):
                raise BackendError(
                    400,
                    f'Cannot change status of {order.order_number} from "{order.status.value}" to "{status.value}"',
                )

        now = self.clock()
        updated = []
        for order in orders:
            changed = order.model_copy(update={"status": status, "updated_at": now})
            self.orders[changed.id] = changed
            updated.append(changed)
        for order in updated:
            await self._emit_status(order)
        logger.info(f"Mock: {len(updated)} orders updated to {status.value}")
        return updated

    async def delete_order(self, order_id: int) -> Optional[Order]:
        await self._simulate("delete_order")
        order = self._get(order_id)
        del self.orders[order.id]
        logger.info(f"Mock: order {order.order_number} deleted")
        await self._emit(
            [Room.ADMIN, Room.KITCHEN] + self._table_rooms(order),
            Events.ORDER_DELETED,
            {
                "type": "order-deleted",
                "orderId": order.id,
                "tableNumber": str(order.table_number) if order.table_number is not None else None,
                "message": "Order has been deleted by staff",
                "timestamp": self.clock().isoformat(),
            },
        )
        return order

    # ==========================================================================
    # READS
    # ==========================================================================

    @staticmethod
    def _newest_first(orders: Iterable[Order]) -> List[Order]:
        return sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)

    async def search_orders(self, filters: Optional[OrderSearchFilters] = None) -> List[Order]:
        await self._simulate("search_orders")
        filters = filters or OrderSearchFilters()
        results = []
        for order in self.orders.values():
            if filters.status and order.status != filters.status:
                continue
            if filters.table_id and order.table_id != filters.table_id:
                continue
            day = order.created_at.date().isoformat() if order.created_at else ""
            if filters.date_from and day < filters.date_from:
                continue
            if filters.date_to and day > filters.date_to:
                continue
            if filters.query:
                needle = filters.query.lower()
                if needle not in order.customer_name.lower() and needle not in order.order_number.lower():
                    continue
            results.append(order)
        return self._newest_first(results)

    async def get_order_by_id(self, order_id: int) -> Order:
        await self._simulate("get_order_by_id")
        return self._get(order_id)

    async def get_orders_by_table(self, table_number: int) -> List[Order]:
        await self._simulate("get_orders_by_table")
        return self._newest_first(o for o in self.orders.values() if o.table_number == int(table_number))

    async def get_table_by_qr_code(self, code: str) -> Table:
        await self._simulate("get_table_by_qr_code")
        for table in self.tables.values():
            if table.is_active and table.qr_code and table.qr_code.lower() == code.lower():
                return table
        raise TableNotFoundError(code)

    async def fetch_tables(self) -> List[Table]:
        await self._simulate("fetch_tables")
        return [t for t in sorted(self.tables.values(), key=lambda t: t.table_number) if t.is_active]

    async def fetch_all_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        await self._simulate("fetch_all_orders")
        return self._newest_first(o for o in self.orders.values() if status is None or o.status == status)

    async def fetch_order_stats(self) -> OrderStats:
        await self._simulate("fetch_order_stats")
        return OrderStats.from_orders(list(self.orders.values()))

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
