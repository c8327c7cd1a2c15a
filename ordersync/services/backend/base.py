"""
Order Backend Abstract Base Class

Defines the interface to the ordering REST service. The backend is
authoritative for orders and tables; the sync layer only consumes it.
Supports both Mock (development) and HTTP (production) implementations.

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ordersync.schemas import (
    CreateOrderPayload,
    CreateOrderResult,
    Order,
    OrderSearchFilters,
    OrderStats,
    OrderStatus,
    Table,
)


class BaseOrderBackend(ABC):
    """Abstract base class for order backends."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    # ==========================================================================
    # MUTATIONS (never retried)
    # ==========================================================================

    @abstractmethod
    async def create_order(self, payload: CreateOrderPayload) -> CreateOrderResult:
        """Place an order; the backend may merge it into an open one (merged=True)."""
        pass

    @abstractmethod
    async def update_order_status(self, order_id: int, status: OrderStatus) -> Order:
        """Change one order's status; completion may be refused (CompletionBlockedError)."""
        pass

    @abstractmethod
    async def bulk_update_order_status(self, order_ids: Sequence[int], status: OrderStatus) -> List[Order]:
        """Change the status of several orders at once."""
        pass

    @abstractmethod
    async def delete_order(self, order_id: int) -> Optional[Order]:
        """Delete an order and its items."""
        pass

    # ==========================================================================
    # READS
    # ==========================================================================

    @abstractmethod
    async def search_orders(self, filters: Optional[OrderSearchFilters] = None) -> List[Order]:
        """Search orders, newest first."""
        pass

    @abstractmethod
    async def get_order_by_id(self, order_id: int) -> Order:
        """Fetch one order with items (OrderNotFoundError when missing)."""
        pass

    @abstractmethod
    async def get_orders_by_table(self, table_number: int) -> List[Order]:
        """All orders for a table number, newest first."""
        pass

    @abstractmethod
    async def get_table_by_qr_code(self, code: str) -> Table:
        """Resolve a QR code to its table (TableNotFoundError when unknown)."""
        pass

    @abstractmethod
    async def fetch_tables(self) -> List[Table]:
        """Active tables ordered by number."""
        pass

    @abstractmethod
    async def fetch_all_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        """Every order (optionally one status), newest first."""
        pass

    @abstractmethod
    async def fetch_order_stats(self) -> OrderStats:
        """Per-status counters."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
