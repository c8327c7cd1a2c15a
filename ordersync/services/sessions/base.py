"""
Session Storage Abstract Base Class

Raw key/value persistence for client session data. Values are JSON
strings; the repository owns encoding, keys and expiry rules.
Supports in-memory (development), file (shared between processes) and
Redis (shared between devices) implementations.

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from typing import List, Optional


class BaseSessionStorage(ABC):
    """Abstract base class for session storages."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the storage name."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored JSON text, or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store JSON text under key (last write wins)."""
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """Remove keys; missing keys are ignored."""
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with prefix."""
        pass

    async def close(self) -> None:
        """Release connections or handles."""
        return None
