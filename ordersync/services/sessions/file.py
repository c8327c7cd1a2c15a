"""
File Session Storage with Concurrency Control

Keeps every session in one JSON document on disk. A FileLock serializes
readers and writers across processes (several kiosk tabs or surfaces on
the same machine); writes replace the file atomically.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from filelock import FileLock, Timeout

from ordersync.core.exceptions import DataIntegrityError, TransportError
from ordersync.services.sessions.base import BaseSessionStorage

logger = logging.getLogger(__name__)


class FileSessionStorage(BaseSessionStorage):
    """JSON file storage guarded by a lock file."""

    def __init__(self, path: str, lock_timeout: int = 10):
        self.path = Path(path)
        self.lock_path = Path(f"{path}.lock")
        self.lock_timeout = lock_timeout
        self._ensure_data_dir()
        logger.info(f"FileSessionStorage initialized ({self.path})")

    @property
    def backend_name(self) -> str:
        return "file"

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        parent = self.path.parent
        if not parent.exists():
            parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {parent}")

    def _lock(self) -> FileLock:
        return FileLock(str(self.lock_path), timeout=self.lock_timeout)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            logger.warning(f"Session file {self.path} unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Session file {self.path} is not an object, starting empty")
            return {}
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in data.items()}

    def _write_all(self, data: Dict[str, str]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def _locked(self, fn):
        try:
            with self._lock():
                return fn()
        except Timeout as e:
            logger.error(f"Lock timeout ({self.lock_timeout}s) on {self.lock_path}")
            raise TransportError(f"Session file lock timeout ({self.lock_timeout}s)") from e

    def _get_sync(self, key: str) -> Optional[str]:
        return self._locked(lambda: self._read_all().get(key))

    def _set_sync(self, key: str, value: str) -> None:
        def write():
            data = self._read_all()
            data[key] = value
            self._write_all(data)
        self._locked(write)

    def _delete_sync(self, keys) -> None:
        def write():
            data = self._read_all()
            removed = [k for k in keys if data.pop(k, None) is not None]
            if removed:
                self._write_all(data)
        self._locked(write)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    async def delete(self, *keys: str) -> None:
        await asyncio.to_thread(self._delete_sync, keys)

    async def keys(self, prefix: str = "") -> List[str]:
        data = await asyncio.to_thread(self._locked, self._read_all)
        return sorted(k for k in data if k.startswith(prefix))

    def read_raw(self) -> Dict[str, str]:
        """Whole document, for inspection tools."""
        if self.path.exists():
            try:
                json.loads(self.path.read_text(encoding="utf-8") or "{}")
            except ValueError as e:
                raise DataIntegrityError(f"Session file {self.path} is not valid JSON") from e
        return self._locked(self._read_all)
