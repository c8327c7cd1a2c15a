"""
Pydantic Schemas for Orders, Sessions and Push Events

Shared data model for the sync layer:
- Orders and order items as returned by the ordering backend
- Client-only cart and session records persisted per table
- Realtime event payloads (camelCase on the wire)

The backend owns Order and OrderItem; local copies are display-only.

Author: Khalil Bannouri
Version: 1.0.0
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so every comparison is well defined."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


# =============================================================================
# ORDERS
# =============================================================================

class OrderItem(BaseModel):
    """Single line of a placed order."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[int] = None
    menu_item_id: Optional[int] = None
    name: str = ""
    quantity: int = Field(..., gt=0)
    unit_price: float = Field(default=0.0, ge=0)
    total_price: Optional[float] = None
    special_instructions: Optional[str] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def accept_backend_names(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            if "special_instructions" not in data and "special_requests" in data:
                data["special_instructions"] = data["special_requests"]
            if not data.get("name") and data.get("menu_item_name"):
                data["name"] = data["menu_item_name"]
            if data.get("name") is None:
                data["name"] = ""
        return data

    @model_validator(mode="after")
    def derive_total(self):
        if self.total_price is None:
            self.total_price = round(self.quantity * self.unit_price, 2)
        return self

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)


class Order(BaseModel):
    """An order as held by the backend."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    order_number: str = ""
    table_id: Optional[int] = None
    table_number: Optional[int] = None
    customer_name: str = ""
    status: OrderStatus = OrderStatus.PENDING
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: float = 0.0
    special_instructions: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)

    @field_validator("order_number", mode="before")
    @classmethod
    def coerce_order_number(cls, v) -> str:
        return "" if v is None else str(v)

    @field_validator("items", mode="before")
    @classmethod
    def coerce_items(cls, v):
        return v or []

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return not self.is_terminal

    @property
    def display_number(self) -> str:
        return self.order_number or f"#{self.id}"


class OrderStats(BaseModel):
    """Per-status counters shown in the kitchen header."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total: int = Field(default=0, validation_alias="total_orders")
    pending: int = Field(default=0, validation_alias="pending_orders")
    preparing: int = Field(default=0, validation_alias="preparing_orders")
    ready: int = Field(default=0, validation_alias="ready_orders")
    completed: int = Field(default=0, validation_alias="completed_orders")
    cancelled: int = Field(default=0, validation_alias="cancelled_orders")

    @classmethod
    def from_orders(cls, orders: List[Order]) -> "OrderStats":
        counts = {status: 0 for status in OrderStatus}
        for order in orders:
            counts[order.status] += 1
        return cls.model_validate({
            "total_orders": len(orders),
            "pending_orders": counts[OrderStatus.PENDING],
            "preparing_orders": counts[OrderStatus.PREPARING],
            "ready_orders": counts[OrderStatus.READY],
            "completed_orders": counts[OrderStatus.COMPLETED],
            "cancelled_orders": counts[OrderStatus.CANCELLED],
        })


class Table(BaseModel):
    """Restaurant table addressed by a QR code."""
    model_config = ConfigDict(extra="ignore")

    id: int
    table_number: int
    qr_code: Optional[str] = None
    qr_code_url: Optional[str] = None
    capacity: Optional[int] = None
    is_active: bool = True


# =============================================================================
# CART / SESSION (client only)
# =============================================================================

class CartEntry(BaseModel):
    """Pre-order line, unique by menu_item_id within a cart."""
    menu_item_id: int
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    special_requests: Optional[str] = None

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class Session(BaseModel):
    """Everything the client keeps for one table or QR identifier."""
    key: str
    cart: List[CartEntry] = Field(default_factory=list)
    customer_name: Optional[str] = None
    special_instructions: Optional[str] = None
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    last_mutated_at: Optional[datetime] = None
    version: int = 0

    @field_validator("last_mutated_at")
    @classmethod
    def normalize_mutated(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)

    @property
    def is_empty(self) -> bool:
        return (
            not self.cart
            and not self.customer_name
            and not self.special_instructions
            and self.order_id is None
        )


class CancelledOrderMarker(BaseModel):
    """Left behind when a push reports a cancellation; drives the fresh start."""
    order_id: int
    table_number: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)


# =============================================================================
# BACKEND REQUESTS / RESPONSES
# =============================================================================

class CreateOrderItem(BaseModel):
    menu_item_id: int
    quantity: int = Field(..., gt=0)
    special_requests: Optional[str] = None


class CreateOrderPayload(BaseModel):
    """Body of POST /orders."""
    table_id: int
    customer_name: str = Field(..., min_length=1)
    special_instructions: Optional[str] = None
    items: List[CreateOrderItem] = Field(..., min_length=1)


class MergeInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    original_order_id: int = Field(..., alias="originalOrderId")
    original_order_number: Optional[str] = Field(None, alias="originalOrderNumber")
    items_added: int = Field(0, alias="itemsAdded")
    new_total: Optional[float] = Field(None, alias="newTotal")

    @field_validator("original_order_number", mode="before")
    @classmethod
    def coerce_number(cls, v):
        return None if v is None else str(v)


class CreateOrderResult(BaseModel):
    """Response of createOrder; merged means items were folded into an open order."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order: Order
    merged: bool = False
    merge_info: Optional[MergeInfo] = Field(None, alias="mergeInfo")


class OrderSearchFilters(BaseModel):
    """Query parameters of GET /orders/search."""
    status: Optional[OrderStatus] = None
    table_id: Optional[int] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    query: Optional[str] = None

    def as_params(self) -> dict:
        params = self.model_dump(exclude_none=True, mode="json")
        return {key: value for key, value in params.items() if value != ""}


# =============================================================================
# REALTIME EVENT PAYLOADS
# =============================================================================

class _EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class OrderStatusUpdateEvent(_EventPayload):
    order_id: int = Field(..., alias="orderId")
    status: OrderStatus
    timestamp: Optional[datetime] = None
    table_number: Optional[str] = Field(None, alias="tableNumber")

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)

    @field_validator("table_number", mode="before")
    @classmethod
    def coerce_table(cls, v):
        return None if v is None else str(v)


class OrderDeletedEvent(_EventPayload):
    order_id: int = Field(..., alias="orderId")
    table_number: Optional[str] = Field(None, alias="tableNumber")

    @field_validator("table_number", mode="before")
    @classmethod
    def coerce_table(cls, v):
        return None if v is None else str(v)


class OrderCompletedEvent(_EventPayload):
    order_id: int = Field(..., alias="orderId")
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)


class OrderCancelledEvent(_EventPayload):
    order_id: int = Field(..., alias="orderId")
    reason: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)


class NewItemsAddedEvent(_EventPayload):
    order_id: int = Field(..., alias="orderId")
    table_number: Optional[str] = Field(None, alias="tableNumber")
    new_items: list = Field(default_factory=list, alias="newItems")
    timestamp: Optional[datetime] = None

    @field_validator("table_number", mode="before")
    @classmethod
    def coerce_table(cls, v):
        return None if v is None else str(v)

    @field_validator("new_items", mode="before")
    @classmethod
    def coerce_items(cls, v):
        return v or []


def parse_new_order_event(data: dict) -> Order:
    """new-order carries a full order, sometimes with camelCase keys."""
    data = dict(data)
    for camel, snake in (
        ("orderNumber", "order_number"),
        ("tableNumber", "table_number"),
        ("customerName", "customer_name"),
        ("totalAmount", "total_amount"),
        ("createdAt", "created_at"),
        ("updatedAt", "updated_at"),
    ):
        if snake not in data and camel in data:
            data[snake] = data[camel]
    return Order.model_validate(data)


__all__ = [
    "utcnow",
    "ensure_aware",
    "OrderStatus",
    "TERMINAL_STATUSES",
    "OrderItem",
    "Order",
    "OrderStats",
    "Table",
    "CartEntry",
    "Session",
    "CancelledOrderMarker",
    "CreateOrderItem",
    "CreateOrderPayload",
    "MergeInfo",
    "CreateOrderResult",
    "OrderSearchFilters",
    "OrderStatusUpdateEvent",
    "OrderDeletedEvent",
    "OrderCompletedEvent",
    "OrderCancelledEvent",
    "NewItemsAddedEvent",
    "parse_new_order_event",
]
