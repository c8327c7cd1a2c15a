"""
In-Memory Session Storage

Process-local dictionary used in development and tests.
Nothing survives a restart.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Dict, List, Optional

from ordersync.services.sessions.base import BaseSessionStorage

logger = logging.getLogger(__name__)


class MemorySessionStorage(BaseSessionStorage):
    """Dictionary-backed storage."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        logger.info("MemorySessionStorage initialized")

    @property
    def backend_name(self) -> str:
        return "memory"

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
