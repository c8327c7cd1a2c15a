"""
Order Sync Entry Point

Runs one surface controller against the configured backend and push
server, logging every change it sees:

    python -m ordersync kitchen
    python -m ordersync admin --status pending
    python -m ordersync customer 12

In development the mock backend and in-process hub are used; --demo seeds
a few orders so the surfaces have something to show.

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from ordersync.controllers import AdminController, CustomerController, KitchenController
from ordersync.controllers.base import SurfaceController
from ordersync.core.config import get_settings, setup_logging
from ordersync.core.exceptions import OrderSyncError
from ordersync.schemas import OrderSearchFilters, OrderStatus
from ordersync.services.backend import get_order_backend
from ordersync.services.backend.mock import MockOrderBackend
from ordersync.services.realtime import get_realtime_channel
from ordersync.services.sessions import get_session_repository

logger = logging.getLogger(__name__)


# =============================================================================
# SURFACES
# =============================================================================

def build_controller(args: argparse.Namespace) -> SurfaceController:
    backend = get_order_backend()
    channel = get_realtime_channel()

    if args.surface == "kitchen":
        controller = KitchenController(backend, channel)
        if args.status:
            controller.set_filter(args.status)
        if args.sort:
            controller.set_sort(args.sort)
        return controller
    if args.surface == "admin":
        filters = OrderSearchFilters(status=args.status, query=args.query)
        return AdminController(backend, channel, filters=filters)
    return CustomerController(args.table, backend, channel, get_session_repository())


def describe(controller: SurfaceController) -> str:
    """One-line summary of what the surface currently shows."""
    if isinstance(controller, KitchenController):
        queue = controller.visible_orders()
        head = ", ".join(f"{o.display_number}:{o.status.value}" for o in queue[:5])
        return f"{len(queue)} in queue [{head}] | {controller.stats().model_dump()}"
    if isinstance(controller, AdminController):
        stats = controller.stats()
        return f"{stats.total} orders ({stats.pending} pending, {stats.ready} ready), {len(controller.selected)} selected"
    if isinstance(controller, CustomerController):
        current = controller.current_order
        tracking = f"{current.display_number}:{current.status.value}" if current else "none"
        return f"view={controller.view.value} cart={controller.cart_count} order={tracking}"
    return type(controller).__name__


def seed_demo(backend) -> None:
    if not isinstance(backend, MockOrderBackend):
        logger.warning("--demo only works with the mock backend (ENV_MODE=development)")
        return
    backend.seed_order(3, "Amira", [(1, 1), (2, 2)])
    backend.seed_order(5, "Jonas", [(3, 1)], status=OrderStatus.PREPARING)
    backend.seed_order(7, "Lea", [(4, 2), (7, 1)], status=OrderStatus.READY)
    logger.info("Seeded 3 demo orders")


# =============================================================================
# RUNNER
# =============================================================================

async def run(args: argparse.Namespace) -> int:
    settings = get_settings()

    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name} ({args.surface})")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Restaurant: {settings.restaurant_name}")
    logger.info("=" * 60)

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    backend = get_order_backend()
    if args.demo:
        seed_demo(backend)

    controller = build_controller(args)
    controller.on_change(lambda c: logger.info(f"[{c.surface}] {describe(c)}"))

    try:
        started = await controller.start()
        if started is False:
            for notice in controller.notices:
                logger.error(f"❌ {notice.message}")
            return 1
        logger.info(f"✅ {args.surface} surface ready: {describe(controller)}")

        if args.duration:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    except OrderSyncError as e:
        logger.error(f"❌ {e.message}")
        return 1
    finally:
        await controller.stop()
        await controller.channel.disconnect()
        await backend.close()
        logger.info("✅ Cleanup complete")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ordersync", description="Restaurant order sync surfaces")
    parser.add_argument("--demo", action="store_true", help="Seed demo orders (mock backend only)")
    parser.add_argument("--duration", type=float, default=None, help="Stop after N seconds")
    sub = parser.add_subparsers(dest="surface", required=True)

    kitchen = sub.add_parser("kitchen", help="Kitchen display queue")
    kitchen.add_argument("--status", choices=[s.value for s in OrderStatus], default=None)
    kitchen.add_argument("--sort", default=None, help="priority, newest, oldest, table, customer, amount_desc, amount_asc")

    admin = sub.add_parser("admin", help="Admin order dashboard")
    admin.add_argument("--status", choices=[s.value for s in OrderStatus], default=None)
    admin.add_argument("--query", default=None, help="Customer name or order number")

    customer = sub.add_parser("customer", help="Customer surface for one table")
    customer.add_argument("table", help="Table number or QR code")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
