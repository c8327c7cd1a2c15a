"""
Session Repository

Typed access to the per-table customer session (cart, name, special
instructions, current order) on top of a raw storage.

Rules enforced here:
    - One canonical key per table or QR identifier (see session_key)
    - Every mutation stamps last_mutated_at and bumps version
    - get() sweeps first: sessions past the TTL, or whose table has a
      cancelled-order marker older than the cooldown, are wiped
    - An empty cart is removed rather than stored; an empty session is deleted
    - A write whose expected_version is behind the stored one is dropped
    - Undecodable JSON is logged and treated as absent

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
import logging
import re
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Union

from pydantic import ValidationError

from ordersync.core.exceptions import DataIntegrityError
from ordersync.schemas import CancelledOrderMarker, CartEntry, Session, utcnow
from ordersync.services.sessions.base import BaseSessionStorage

logger = logging.getLogger(__name__)

Identifier = Union[str, int]

_TABLE_RE = re.compile(r"^(?:table[\s_-]*)?0*(\d+)$")
_SLUG_RE = re.compile(r"[^a-z0-9_-]+")


def session_key(identifier: Identifier) -> str:
    """
    Canonical session key for a table number or QR code.

    "12", 12, "table-12", "TABLE_12" and "Table 12" all map to "table-12";
    any other code maps to "code-<slug>".
    """
    text = str(identifier).strip().lower()
    if not text:
        raise ValueError("Session identifier must not be empty")
    match = _TABLE_RE.match(text)
    if match:
        return f"table-{int(match.group(1))}"
    if text.startswith("code-"):
        text = text[len("code-"):]
    slug = _SLUG_RE.sub("-", text).strip("-")
    if not slug:
        raise ValueError(f"Invalid session identifier: {identifier!r}")
    return f"code-{slug}"


def table_of(key: str) -> Optional[str]:
    """Table number encoded in a canonical key, if it is a table key."""
    if key.startswith("table-"):
        return key[len("table-"):]
    return None


class SessionRepository:
    """
    Repository of client sessions.

    Args:
        storage: Raw storage backend
        ttl_seconds: Sessions untouched for longer are wiped (4 hours)
        cancelled_cooldown_seconds: Delay after a cancellation before a fresh start
        prefix: Namespace for stored keys
        clock: Returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        storage: BaseSessionStorage,
        ttl_seconds: float = 4 * 3600,
        cancelled_cooldown_seconds: float = 300,
        prefix: str = "ordersync",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.ttl = timedelta(seconds=ttl_seconds)
        self.cooldown = timedelta(seconds=cancelled_cooldown_seconds)
        self.prefix = prefix
        self.clock = clock

    # ==========================================================================
    # KEYS
    # ==========================================================================

    def _session_storage_key(self, key: str) -> str:
        return f"{self.prefix}:session:{key}"

    def _marker_storage_key(self, table: str) -> str:
        return f"{self.prefix}:cancelled:{table}"

    @staticmethod
    def _marker_table(identifier: Identifier) -> str:
        key = session_key(identifier)
        return table_of(key) or key

    # ==========================================================================
    # LOW LEVEL
    # ==========================================================================

    async def _load(self, key: str) -> Optional[Session]:
        raw = await self.storage.get(self._session_storage_key(key))
        if raw is None:
            return None
        try:
            session = Session.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Discarding malformed session {key}: {e}")
            await self.storage.delete(self._session_storage_key(key))
            return None
        if session.key != key:
            session = session.model_copy(update={"key": key})
        return session

    async def _save(self, session: Session) -> None:
        if session.is_empty:
            await self.storage.delete(self._session_storage_key(session.key))
            logger.debug(f"Session {session.key} empty, removed")
            return
        # an emptied cart is dropped from the entry rather than stored as []
        await self.storage.set(
            self._session_storage_key(session.key),
            session.model_dump_json(exclude_none=True, exclude=None if session.cart else {"cart"}),
        )

    async def _load_marker(self, table: str) -> Optional[CancelledOrderMarker]:
        raw = await self.storage.get(self._marker_storage_key(table))
        if raw is None:
            return None
        try:
            return CancelledOrderMarker.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Discarding malformed cancelled marker for table {table}: {e}")
            await self.storage.delete(self._marker_storage_key(table))
            return None

    async def _wipe(self, key: str, table: Optional[str] = None) -> None:
        keys = [self._session_storage_key(key)]
        if table is not None:
            keys.append(self._marker_storage_key(table))
        await self.storage.delete(*keys)

    # ==========================================================================
    # READ
    # ==========================================================================

    async def get(self, identifier: Identifier) -> Session:
        """
        Load the session for an identifier, sweeping stale data first.

        Returns:
            The stored session, or an empty Session when nothing valid is stored
        """
        key = session_key(identifier)
        now = self.clock()
        table = table_of(key) or key

        marker = await self._load_marker(table)
        if marker is not None and now - marker.timestamp >= self.cooldown:
            logger.info(
                f"Cancelled order {marker.order_id} cooldown expired for {key}, fresh start"
            )
            await self._wipe(key, table)
            return Session(key=key)

        session = await self._load(key)
        if session is None:
            return Session(key=key)

        if session.last_mutated_at is not None and now - session.last_mutated_at > self.ttl:
            logger.info(f"Session {key} older than {self.ttl}, wiped")
            await self._wipe(key)
            return Session(key=key)

        return session

    async def exists(self, identifier: Identifier) -> bool:
        session = await self.get(identifier)
        return not session.is_empty

    # ==========================================================================
    # MUTATIONS
    # ==========================================================================

    async def _mutate(
        self,
        identifier: Identifier,
        changes: dict,
        expected_version: Optional[int] = None,
    ) -> Session:
        current = await self.get(identifier)
        if expected_version is not None and expected_version < current.version:
            logger.warning(
                f"Ignoring stale write to {current.key} "
                f"(expected v{expected_version}, stored v{current.version})"
            )
            return current

        updated = current.model_copy(update={
            **changes,
            "last_mutated_at": self.clock(),
            "version": current.version + 1,
        })
        await self._save(updated)
        return updated

    async def set_cart(
        self,
        identifier: Identifier,
        cart: Sequence[CartEntry],
        expected_version: Optional[int] = None,
    ) -> Session:
        """Replace the cart; an empty cart removes the entry."""
        return await self._mutate(identifier, {"cart": list(cart)}, expected_version)

    async def set_customer(
        self,
        identifier: Identifier,
        name: Optional[str],
        expected_version: Optional[int] = None,
    ) -> Session:
        name = (name or "").strip() or None
        return await self._mutate(identifier, {"customer_name": name}, expected_version)

    async def set_instructions(
        self,
        identifier: Identifier,
        text: Optional[str],
        expected_version: Optional[int] = None,
    ) -> Session:
        text = (text or "").strip() or None
        return await self._mutate(identifier, {"special_instructions": text}, expected_version)

    async def set_current_order(
        self,
        identifier: Identifier,
        order_id: Optional[int],
        order_number: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Session:
        """Remember the order being tracked so a re-scan resumes it."""
        changes = {"order_id": order_id, "order_number": order_number if order_id else None}
        return await self._mutate(identifier, changes, expected_version)

    async def touch(self, identifier: Identifier) -> Session:
        """Refresh the staleness timestamp without changing data."""
        return await self._mutate(identifier, {})

    async def clear(self, identifier: Identifier) -> None:
        """Remove everything kept for the identifier, marker included."""
        key = session_key(identifier)
        await self._wipe(key, table_of(key) or key)
        logger.info(f"Session {key} cleared")

    # ==========================================================================
    # CANCELLED ORDER MARKERS
    # ==========================================================================

    async def mark_cancelled(self, table: Identifier, order_id: int) -> CancelledOrderMarker:
        table_id = self._marker_table(table)
        marker = CancelledOrderMarker(
            order_id=order_id,
            table_number=table_id,
            timestamp=self.clock(),
        )
        await self.storage.set(self._marker_storage_key(table_id), marker.model_dump_json())
        logger.info(f"Order {order_id} cancelled at table {table_id}, cooldown started")
        return marker

    async def get_cancelled_marker(self, table: Identifier) -> Optional[CancelledOrderMarker]:
        return await self._load_marker(self._marker_table(table))

    async def clear_cancelled_marker(self, table: Identifier) -> None:
        await self.storage.delete(self._marker_storage_key(self._marker_table(table)))

    def cooldown_remaining(self, marker: CancelledOrderMarker) -> float:
        elapsed = self.clock() - marker.timestamp
        return max(0.0, (self.cooldown - elapsed).total_seconds())

    # ==========================================================================
    # MAINTENANCE
    # ==========================================================================

    async def keys(self) -> List[str]:
        """Canonical keys of every stored session."""
        prefix = f"{self.prefix}:session:"
        return [k[len(prefix):] for k in await self.storage.keys(prefix)]

    async def sweep(self) -> List[str]:
        """Apply the expiry rules to every stored session; returns wiped keys."""
        wiped = []
        for key in await self.keys():
            before = await self.storage.get(self._session_storage_key(key))
            await self.get(key)
            after = await self.storage.get(self._session_storage_key(key))
            if before is not None and after is None:
                wiped.append(key)
        return wiped

    async def clear_all(self) -> int:
        """Drop every session and marker in the namespace."""
        keys = await self.storage.keys(f"{self.prefix}:")
        if keys:
            await self.storage.delete(*keys)
        logger.info(f"Cleared {len(keys)} stored session key(s)")
        return len(keys)


def decode_session(raw: str) -> Session:
    """Decode stored session JSON, raising DataIntegrityError when it is unusable."""
    try:
        return Session.model_validate(json.loads(raw))
    except (ValidationError, ValueError, TypeError) as e:
        raise DataIntegrityError(f"Malformed session data: {e}") from e
