"""
Kitchen queue ordering.

filter_and_sort() is a pure function of (orders, active_filter, sort_key).
Every sort breaks ties by newest created_at first; when a specific status
filter is active the queue is simply newest first.
"""

from enum import Enum
from typing import Callable, Dict, List, Sequence, Tuple, Union

from ordersync.schemas import Order, OrderStatus
from ordersync.services.transition_policy import status_priority

ALL = "all"


class SortKey(str, Enum):
    PRIORITY = "priority"
    NEWEST = "newest"
    OLDEST = "oldest"
    TABLE = "table"
    CUSTOMER = "customer"
    AMOUNT_DESC = "amount_desc"
    AMOUNT_ASC = "amount_asc"


# names used by the web kitchen display
SORT_ALIASES: Dict[str, SortKey] = {
    "time": SortKey.NEWEST,
    "time-oldest": SortKey.OLDEST,
    "amount": SortKey.AMOUNT_DESC,
    "amount-low": SortKey.AMOUNT_ASC,
}


def parse_sort_key(value: Union[str, SortKey, None]) -> SortKey:
    """Resolve a sort key or alias; unknown values fall back to priority."""
    if isinstance(value, SortKey):
        return value
    if not value:
        return SortKey.PRIORITY
    value = str(value).lower()
    if value in SORT_ALIASES:
        return SORT_ALIASES[value]
    try:
        return SortKey(value)
    except ValueError:
        return SortKey.PRIORITY


def _created(order: Order) -> float:
    return order.created_at.timestamp() if order.created_at else 0.0


def _table(order: Order) -> int:
    return order.table_number or 0


_KEYS: Dict[SortKey, Callable[[Order], Tuple]] = {
    SortKey.PRIORITY: lambda o: (status_priority(o.status), -_created(o)),
    SortKey.NEWEST: lambda o: (-_created(o),),
    SortKey.OLDEST: lambda o: (_created(o),),
    SortKey.TABLE: lambda o: (_table(o), -_created(o)),
    SortKey.CUSTOMER: lambda o: ((o.customer_name or "").lower(), -_created(o)),
    SortKey.AMOUNT_DESC: lambda o: (-(o.total_amount or 0.0), -_created(o)),
    SortKey.AMOUNT_ASC: lambda o: (o.total_amount or 0.0, -_created(o)),
}


def matches_filter(order: Order, active_filter: Union[str, OrderStatus, None]) -> bool:
    if active_filter is None or active_filter == ALL:
        return True
    return order.status == OrderStatus(active_filter)


def filter_and_sort(
    orders: Sequence[Order],
    active_filter: Union[str, OrderStatus, None] = ALL,
    sort_key: Union[str, SortKey, None] = SortKey.PRIORITY,
) -> List[Order]:
    """Visible kitchen queue for a status filter and sort key."""
    selected = [o for o in orders if matches_filter(o, active_filter)]
    if active_filter not in (None, ALL):
        return sorted(selected, key=_KEYS[SortKey.NEWEST])
    return sorted(selected, key=_KEYS[parse_sort_key(sort_key)])
