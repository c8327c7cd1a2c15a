"""
Session Repository Factory

Returns a SessionRepository over the storage selected by SESSION_BACKEND
(memory in development, file otherwise unless configured).

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from ordersync.core.config import SessionBackend, get_settings
from ordersync.services.sessions.base import BaseSessionStorage
from ordersync.services.sessions.cart import (
    add_to_cart,
    cart_item_count,
    cart_total,
    remove_from_cart,
    to_order_items,
    update_quantity,
)
from ordersync.services.sessions.file import FileSessionStorage
from ordersync.services.sessions.memory import MemorySessionStorage
from ordersync.services.sessions.redis_store import RedisSessionStorage
from ordersync.services.sessions.repository import SessionRepository, session_key, table_of

logger = logging.getLogger(__name__)


def create_session_storage(backend: SessionBackend) -> BaseSessionStorage:
    """Build a storage for the given backend."""
    settings = get_settings()

    if backend == SessionBackend.FILE:
        return FileSessionStorage(settings.session_file_path, settings.session_lock_timeout)
    if backend == SessionBackend.REDIS:
        return RedisSessionStorage(settings.redis_url)
    return MemorySessionStorage()


@lru_cache()
def get_session_repository() -> SessionRepository:
    """Get the configured session repository."""
    settings = get_settings()
    backend = settings.effective_session_backend

    logger.info(f"Session Store: Using {backend.value} storage ({settings.env_mode.value} mode)")
    return SessionRepository(
        create_session_storage(backend),
        ttl_seconds=settings.session_ttl_seconds,
        cancelled_cooldown_seconds=settings.cancelled_order_cooldown_seconds,
        prefix=settings.session_key_prefix,
    )


def reset_session_repository() -> None:
    """Clear the cached repository instance."""
    get_session_repository.cache_clear()


__all__ = [
    "get_session_repository",
    "reset_session_repository",
    "create_session_storage",
    "BaseSessionStorage",
    "MemorySessionStorage",
    "RedisSessionStorage",
    "FileSessionStorage",
    "SessionRepository",
    "session_key",
    "table_of",
    "add_to_cart",
    "remove_from_cart",
    "update_quantity",
    "cart_total",
    "cart_item_count",
    "to_order_items",
]
