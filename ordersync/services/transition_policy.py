"""
Order Status Transition Policy

Pure rules for the order status graph:

    pending   -> preparing | cancelled
    preparing -> ready     | cancelled
    ready     -> completed | cancelled
    completed -> (terminal)
    cancelled -> (terminal)

Every mutating call site (single update, bulk update, kitchen quick action)
runs ensure_transition() before talking to the backend. Completion has a
second guard: a customer may not close an order while another of their
orders at the same table is still active.

Author: Khalil Bannouri
Version: 1.0.0
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Union

from ordersync.core.exceptions import CompletionBlockedError, InvalidTransitionError
from ordersync.schemas import Order, OrderStatus


StatusLike = Union[OrderStatus, str]

STATUS_FLOW: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Queue rank used by the kitchen "priority" sort
STATUS_PRIORITY: Dict[OrderStatus, int] = {
    OrderStatus.PENDING: 1,
    OrderStatus.PREPARING: 2,
    OrderStatus.READY: 3,
    OrderStatus.COMPLETED: 4,
}

_FORWARD = {
    OrderStatus.PENDING: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.COMPLETED,
}

_STEPS = {
    OrderStatus.PENDING: 1,
    OrderStatus.PREPARING: 2,
    OrderStatus.READY: 3,
    OrderStatus.COMPLETED: 4,
}


@dataclass
class CompletionCheck:
    """Result of the sibling-order completion guard."""
    allowed: bool
    blocking_orders: List[Order] = field(default_factory=list)


def _coerce(status: StatusLike) -> Optional[OrderStatus]:
    if isinstance(status, OrderStatus):
        return status
    try:
        return OrderStatus(str(status).lower())
    except ValueError:
        return None


def can_transition(current: StatusLike, next_status: StatusLike) -> bool:
    """True only for edges of the status graph; unknown statuses never move."""
    src, dst = _coerce(current), _coerce(next_status)
    if src is None or dst is None:
        return False
    return dst in STATUS_FLOW[src]


def ensure_transition(current: StatusLike, next_status: StatusLike) -> None:
    """Raise InvalidTransitionError naming both statuses when the edge is missing."""
    if not can_transition(current, next_status):
        raise InvalidTransitionError(current, next_status)


def is_terminal(status: StatusLike) -> bool:
    coerced = _coerce(status)
    return coerced is not None and not STATUS_FLOW[coerced]


def _same_customer(a: Order, b: Order) -> bool:
    name_a = (a.customer_name or "").strip().lower()
    name_b = (b.customer_name or "").strip().lower()
    if name_a != name_b:
        return False
    if a.table_number is not None and b.table_number is not None:
        return a.table_number == b.table_number
    if a.table_id is not None and b.table_id is not None:
        return a.table_id == b.table_id
    return True


def can_complete(order: Order, all_orders_for_customer: Iterable[Order]) -> CompletionCheck:
    """
    Check whether an order may be completed.

    Sibling orders are other orders for the same customer name and table
    that are neither completed nor cancelled. Any sibling blocks completion.

    Args:
        order: The order about to be completed
        all_orders_for_customer: Candidate siblings (may include the order itself)

    Returns:
        CompletionCheck with the blocking orders, oldest first
    """
    blocking = [
        other for other in all_orders_for_customer
        if other.id != order.id and other.is_active and _same_customer(order, other)
    ]
    blocking.sort(key=lambda o: (o.created_at.timestamp() if o.created_at else 0.0, o.id))
    return CompletionCheck(allowed=not blocking, blocking_orders=blocking)


def ensure_can_complete(order: Order, all_orders_for_customer: Iterable[Order]) -> None:
    check = can_complete(order, all_orders_for_customer)
    if not check.allowed:
        raise CompletionBlockedError(
            order.id,
            blocking_orders=check.blocking_orders,
            customer_name=order.customer_name,
        )


def next_status(current: StatusLike) -> Optional[OrderStatus]:
    """Forward step for the kitchen quick action; None once terminal."""
    src = _coerce(current)
    return _FORWARD.get(src) if src is not None else None


def status_step(status: StatusLike) -> int:
    """Progress step 1..4 for the tracker; 0 for cancelled or unknown."""
    coerced = _coerce(status)
    return _STEPS.get(coerced, 0) if coerced is not None else 0


def is_forward(current: StatusLike, incoming: StatusLike) -> bool:
    """
    True when incoming is current or further along the flow.

    Cancelled is reachable from every active status. Used to order updates
    that carry no timestamp or the same one as the last applied update.
    """
    src, dst = _coerce(current), _coerce(incoming)
    if src is None or dst is None:
        return False
    if src == dst:
        return True
    if is_terminal(src):
        return False
    if dst == OrderStatus.CANCELLED:
        return True
    return status_step(dst) > status_step(src)


def status_priority(status: StatusLike) -> int:
    """Queue rank; cancelled and unknown statuses sort last."""
    return STATUS_PRIORITY.get(_coerce(status), len(STATUS_PRIORITY) + 1)
