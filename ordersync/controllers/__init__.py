"""
                        Controllers Module

Surface controllers that turn backend responses and push events into
what each screen shows:
    - CustomerController: cart, ordering and live tracking for one table
    - KitchenController: live queue with filters, sorting and quick advance
    - AdminController: order management, bulk updates and details
"""

from ordersync.controllers.admin import AdminController, OrderDetails
from ordersync.controllers.base import Notice, OrderBoardController, SurfaceController, TimestampGuard
from ordersync.controllers.customer import CustomerController
from ordersync.controllers.kitchen import KitchenController

__all__ = [
    "AdminController",
    "CustomerController",
    "KitchenController",
    "Notice",
    "OrderBoardController",
    "OrderDetails",
    "SurfaceController",
    "TimestampGuard",
]
