"""
Core module initialization.
Exports configuration, logging utilities and the error hierarchy.
"""

from ordersync.core.config import get_settings, Settings, EnvironmentMode, SessionBackend
from ordersync.core.exceptions import OrderSyncError

__all__ = ["get_settings", "Settings", "EnvironmentMode", "SessionBackend", "OrderSyncError"]
