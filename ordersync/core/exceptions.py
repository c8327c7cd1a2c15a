"""
Order Sync Exceptions

Single hierarchy for every failure the sync layer can surface:
    - Policy violations: rejected locally, no network call, never retried
    - Transport failures: realtime reconnects with backoff, REST gets a retry notice
    - Data integrity failures: logged, state treated as empty
    - Backend refusals: carry the structured detail from the server

Author: Khalil Bannouri
Version: 1.0.0
"""

from typing import Any, Optional


class OrderSyncError(Exception):
    """Base class for all order sync errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


# =============================================================================
# POLICY VIOLATIONS
# =============================================================================

class PolicyViolationError(OrderSyncError):
    """A mutation was refused locally before any backend call."""


class InvalidTransitionError(PolicyViolationError):
    """Status change not allowed by the order status graph."""

    def __init__(self, current: Any, attempted: Any):
        self.current = getattr(current, "value", current)
        self.attempted = getattr(attempted, "value", attempted)
        super().__init__(
            f"Cannot change order status from '{self.current}' to '{self.attempted}'"
        )


class CompletionBlockedError(PolicyViolationError):
    """Completion refused because the customer still has other active orders."""

    def __init__(
        self,
        order_id: Any,
        blocking_orders: Optional[list] = None,
        customer_name: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.order_id = order_id
        self.blocking_orders = list(blocking_orders or [])
        self.customer_name = customer_name
        if message is None:
            who = customer_name or "this customer"
            message = (
                f"Cannot complete order {order_id}: {who} has "
                f"{len(self.blocking_orders)} other active order(s)"
            )
        super().__init__(message)


class InvalidSelectionError(PolicyViolationError):
    """Bulk selection includes orders that cannot be acted on."""


# =============================================================================
# TRANSPORT FAILURES
# =============================================================================

class TransportError(OrderSyncError):
    """Network-level failure talking to the backend or push server."""


class BackendUnavailableError(TransportError):
    """The REST backend could not be reached."""


class RequestTimeoutError(TransportError):
    """A REST call did not complete in time."""


class RealtimeConnectionError(TransportError):
    """The push connection could not be (re)established."""


# =============================================================================
# DATA / BACKEND FAILURES
# =============================================================================

class DataIntegrityError(OrderSyncError):
    """Persisted or received data could not be decoded."""


class BackendError(OrderSyncError):
    """The backend answered with a non-success status."""

    def __init__(self, status_code: int, detail: Any = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Backend returned {status_code}: {detail}")


class OrderNotFoundError(OrderSyncError):
    """The referenced order no longer exists."""

    def __init__(self, order_id: Any):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class TableNotFoundError(OrderSyncError):
    """No table matches the given number or QR code."""

    def __init__(self, identifier: Any):
        self.identifier = identifier
        super().__init__(f"Table {identifier} not found")


__all__ = [
    "OrderSyncError",
    "PolicyViolationError",
    "InvalidTransitionError",
    "CompletionBlockedError",
    "InvalidSelectionError",
    "TransportError",
    "BackendUnavailableError",
    "RequestTimeoutError",
    "RealtimeConnectionError",
    "DataIntegrityError",
    "BackendError",
    "OrderNotFoundError",
    "TableNotFoundError",
]
