"""
Order Backend Factory

Provides a single entry point for obtaining an order backend instance.
Automatically selects the in-memory mock or the HTTP client based on
ENV_MODE configuration.

Usage:
    from ordersync.services.backend import get_order_backend

    backend = get_order_backend()
    result = await backend.create_order(payload)
    if result.merged:
        ...

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from ordersync.core.config import get_settings
from ordersync.services.backend.base import BaseOrderBackend
from ordersync.services.backend.http import HttpOrderBackend
from ordersync.services.backend.mock import MockOrderBackend
from ordersync.services.realtime import get_realtime_hub

logger = logging.getLogger(__name__)


@lru_cache()
def get_order_backend() -> BaseOrderBackend:
    """Get the configured order backend."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Order Backend: Using MockOrderBackend (development mode)")
        return MockOrderBackend(hub=get_realtime_hub(), latency=(0.05, 0.2))
    else:
        logger.info(f"Order Backend: Using HttpOrderBackend ({settings.env_mode.value} mode)")
        return HttpOrderBackend()


def reset_order_backend() -> None:
    """Clear the cached backend instance."""
    get_order_backend.cache_clear()


__all__ = [
    "get_order_backend",
    "reset_order_backend",
    "BaseOrderBackend",
    "HttpOrderBackend",
    "MockOrderBackend",
]
