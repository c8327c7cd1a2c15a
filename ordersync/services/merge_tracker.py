"""
Merge Tracker

Classifies the items of an order by age so the surfaces can tell the
original order apart from items added after a QR re-scan:

- is_new / sort_by_newness: highlight recently added items
- group_by_session: cluster items separated by less than a time gap
- has_multiple_sessions: flag a merged order on kitchen and admin cards

Items keep their backend created_at; nothing here rewrites it.

Author: Khalil Bannouri
Version: 1.0.0
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from ordersync.schemas import OrderItem, ensure_aware, utcnow


DEFAULT_NEW_THRESHOLD_MINUTES = 30
DEFAULT_SESSION_GAP_MINUTES = 5

ORIGINAL = "original"
ADDED = "added"


@dataclass
class OrderingSession:
    """A cluster of items added within the session gap of each other."""
    index: int
    label: str
    started_at: Optional[datetime]
    items: List[OrderItem] = field(default_factory=list)

    @property
    def is_original(self) -> bool:
        return self.label == ORIGINAL


def _age_minutes(item: OrderItem, now: datetime) -> Optional[float]:
    if item.created_at is None:
        return None
    return (ensure_aware(now) - item.created_at).total_seconds() / 60


def is_new(
    item: OrderItem,
    now: Optional[datetime] = None,
    threshold_minutes: int = DEFAULT_NEW_THRESHOLD_MINUTES,
) -> bool:
    """Item younger than the threshold; items without created_at are never new."""
    age = _age_minutes(item, now or utcnow())
    return age is not None and age < threshold_minutes


def _created_ts(item: OrderItem) -> float:
    return item.created_at.timestamp() if item.created_at else float("-inf")


def sort_by_newness(
    items: Sequence[OrderItem],
    now: Optional[datetime] = None,
    threshold_minutes: int = DEFAULT_NEW_THRESHOLD_MINUTES,
) -> List[OrderItem]:
    """New items first, then everything by created_at descending."""
    now = now or utcnow()
    return sorted(
        items,
        key=lambda item: (not is_new(item, now, threshold_minutes), -_created_ts(item)),
    )


def group_by_session(
    items: Sequence[OrderItem],
    gap_minutes: int = DEFAULT_SESSION_GAP_MINUTES,
) -> List[OrderingSession]:
    """
    Split items into ordering sessions.

    Items are sorted ascending by created_at; a new session starts whenever
    the gap to the previous item exceeds gap_minutes. The first session is
    labelled "original", every later one "added". Items without created_at
    sort first and stay with the session they land in.

    Args:
        items: Order items in any order
        gap_minutes: Maximum gap inside one session

    Returns:
        Sessions in chronological order (empty list for no items)
    """
    if not items:
        return []

    ordered = sorted(items, key=_created_ts)
    gap = timedelta(minutes=gap_minutes)

    sessions: List[OrderingSession] = []
    current = OrderingSession(index=1, label=ORIGINAL, started_at=ordered[0].created_at)
    previous: Optional[datetime] = ordered[0].created_at

    for item in ordered:
        stamp = item.created_at
        if current.items and stamp is not None and previous is not None and stamp - previous > gap:
            sessions.append(current)
            current = OrderingSession(
                index=len(sessions) + 1,
                label=ADDED,
                started_at=stamp,
            )
        current.items.append(item)
        if stamp is not None:
            previous = stamp
            if current.started_at is None:
                current.started_at = stamp

    sessions.append(current)
    return sessions


def flatten_sessions(sessions: Sequence[OrderingSession]) -> List[OrderItem]:
    return [item for session in sessions for item in session.items]


def has_multiple_sessions(
    items: Sequence[OrderItem],
    gap_minutes: int = DEFAULT_SESSION_GAP_MINUTES,
) -> bool:
    """True when the order was extended after the original placement."""
    return len(group_by_session(items, gap_minutes)) > 1


def time_since_added(item: OrderItem, now: Optional[datetime] = None) -> str:
    age = _age_minutes(item, now or utcnow())
    if age is None:
        return ""
    minutes = int(age)
    if minutes < 1:
        return "Just added"
    if minutes == 1:
        return "1 minute ago"
    if minutes < 60:
        return f"{minutes} minutes ago"
    hours = minutes // 60
    if hours == 1:
        return "1 hour ago"
    return f"{hours} hours ago"


def _format_clock(stamp: datetime) -> str:
    hour = stamp.hour % 12 or 12
    suffix = "AM" if stamp.hour < 12 else "PM"
    return f"{hour}:{stamp.minute:02d} {suffix}"


def session_title(session: OrderingSession, tz=None) -> str:
    """'Original Order (7:05 PM)' or 'Added Items (7:20 PM)'."""
    prefix = "Original Order" if session.is_original else "Added Items"
    if session.started_at is None:
        return prefix
    stamp = session.started_at.astimezone(tz) if tz is not None else session.started_at
    return f"{prefix} ({_format_clock(stamp)})"
