"""
Order Lifecycle Simulation Script

Runs the customer, kitchen and admin surfaces against the in-memory
backend and push hub, walking one table through a full service:
order, re-scan and merge, kitchen progression, blocked completion,
completion and fresh start.

Run from project root: python scripts/simulate.py

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import os
import sys
import time
from datetime import datetime, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ordersync.controllers import AdminController, CustomerController, KitchenController
from ordersync.core.config import get_settings, setup_logging
from ordersync.core.exceptions import CompletionBlockedError, OrderSyncError
from ordersync.schemas import OrderStatus, utcnow
from ordersync.services.alerts import MockAlertService
from ordersync.services.backend.mock import DEFAULT_MENU, MockOrderBackend
from ordersync.services.realtime import InMemoryRealtimeChannel, InMemoryRealtimeHub
from ordersync.services.sessions import MemorySessionStorage, SessionRepository


class SimClock:
    """Manually advanced clock so ordering sessions are minutes apart."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


def step(n: int, title: str) -> None:
    print(f"\n{n}️⃣  {title}")


async def run_simulation(table: int, customer_name: str) -> bool:
    settings = get_settings().model_copy(update={"completed_display_delay_seconds": 0})
    clock = SimClock()
    hub = InMemoryRealtimeHub()
    backend = MockOrderBackend(hub=hub, clock=clock)
    repository = SessionRepository(MemorySessionStorage(), clock=clock)

    def channel() -> InMemoryRealtimeChannel:
        return InMemoryRealtimeChannel(hub, alerts=MockAlertService())

    customer = CustomerController(str(table), backend, channel(), repository, settings, clock)
    kitchen = KitchenController(backend, channel(), settings=settings, clock=clock)
    admin = AdminController(backend, channel(), settings=settings, clock=clock)

    print("=" * 70)
    print("🍽️  ORDER LIFECYCLE SIMULATION")
    print("=" * 70)
    print(f"🪑 Table: {table}")
    print(f"🙋 Customer: {customer_name}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    ok = True
    try:
        await customer.start()
        await kitchen.start()
        await admin.start()

        step(1, "Customer places the first order...")
        await customer.set_customer_name(customer_name)
        await customer.add_item(1, *DEFAULT_MENU[1], quantity=1)
        await customer.add_item(2, *DEFAULT_MENU[2], quantity=2)
        result = await customer.place_order()
        order_id = result.order.id
        print(f"   ✅ Order {result.order.display_number} placed (${result.order.total_amount:.2f})")
        print(f"   👀 Customer view: {customer.view.value}")
        print(f"   🍳 Kitchen queue: {[o.display_number for o in kitchen.visible_orders()]}")

        step(2, "Kitchen starts preparing...")
        await kitchen.advance(order_id)
        print(f"   ✅ Customer sees: {customer.current_order.status.value}")

        step(3, "Customer re-scans and orders more 10 minutes later...")
        clock.advance(10)
        customer.continue_ordering()
        await customer.add_item(4, *DEFAULT_MENU[4], quantity=2)
        merged = await customer.place_order()
        details = admin.order_details(order_id)
        print(f"   ✅ Merged: {merged.merged} (items added: {merged.merge_info.items_added})")
        print(f"   📦 Sessions on the order: {len(details.sessions)} | new items: {details.new_count}")

        step(4, "A duplicate order shows up for the same customer...")
        sibling = backend.seed_order(table, customer_name, [(8, 1)])
        await kitchen.reload()
        await admin.reload()
        await kitchen.advance(order_id)
        try:
            await kitchen.update_status(order_id, OrderStatus.COMPLETED)
            print("   ❌ Completion should have been blocked")
            ok = False
        except CompletionBlockedError as e:
            blockers = [o.display_number for o in e.blocking_orders]
            print(f"   ✅ Completion blocked by {blockers}")

        step(5, "Admin cancels the duplicate, kitchen completes the order...")
        await admin.update_status(sibling.id, OrderStatus.CANCELLED)
        await kitchen.update_status(order_id, OrderStatus.COMPLETED)
        await asyncio.sleep(0)
        print(f"   ✅ Kitchen active: {len(kitchen.active)} | completed: {len(kitchen.completed)}")
        print(f"   🔄 Customer view: {customer.view.value} | cart: {customer.cart_count}")
        stored = await repository.get(table)
        print(f"   🧹 Session cleared: {stored.is_empty}")
        ok = ok and stored.is_empty

    except OrderSyncError as e:
        print(f"\n❌ Simulation failed: {e.message}")
        ok = False
    finally:
        for controller in (customer, kitchen, admin):
            await controller.stop()
            await controller.channel.disconnect()

    total_time = round(time.time() - start_time, 3)
    stats = admin.stats()

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"📋 Backend calls: {len(backend.calls)}")
    print(f"📡 Push events emitted: {len(hub.history)}")
    print(f"📈 Orders: {stats.total} ({stats.completed} completed, {stats.cancelled} cancelled)")
    print(f"⏱️  Total Time: {total_time}s")
    print("=" * 70)
    print("✅ SIMULATION COMPLETE" if ok else "❌ SIMULATION FOUND PROBLEMS")
    print("=" * 70)
    return ok


def main() -> int:
    parser = argparse.ArgumentParser(description="Order lifecycle simulation")
    parser.add_argument("--table", type=int, default=4, help="Table number (default: 4)")
    parser.add_argument("--customer", default="Amira", help="Customer name (default: Amira)")
    parser.add_argument("--verbose", action="store_true", help="Show service logs")
    args = parser.parse_args()

    if args.verbose:
        setup_logging()
    ok = asyncio.run(run_simulation(args.table, args.customer))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
