"""
Customer view state machine.

The customer surface shows one of three views: menu, cart or tracking.
View selection is a pure reducer over an explicit action stream (local
user actions plus normalized push events), so manual navigation and
automatic promotion to tracking cannot race each other.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union


class View(str, Enum):
    MENU = "menu"
    CART = "cart"
    TRACKING = "tracking"


class Announcement(str, Enum):
    ORDER_PLACED = "order-placed"
    ITEMS_ADDED = "items-added"
    FRESH_START = "fresh-start"
    ORDER_GONE = "order-gone"


@dataclass(frozen=True)
class ViewState:
    view: View = View.MENU
    active_orders: int = 0
    manual_menu_until: Optional[datetime] = None
    announcement: Optional[Announcement] = None

    def menu_protected(self, now: datetime) -> bool:
        return self.manual_menu_until is not None and now < self.manual_menu_until


# =============================================================================
# ACTIONS
# =============================================================================

@dataclass(frozen=True)
class Loaded:
    has_order: bool
    cart_count: int = 0
    active_orders: int = 0


@dataclass(frozen=True)
class OpenCart:
    pass


@dataclass(frozen=True)
class OpenMenu:
    pass


@dataclass(frozen=True)
class OrderPlaced:
    merged: bool = False


@dataclass(frozen=True)
class ContinueOrdering:
    now: datetime


@dataclass(frozen=True)
class ActiveOrdersChanged:
    count: int
    now: datetime


@dataclass(frozen=True)
class Tick:
    now: datetime


@dataclass(frozen=True)
class FreshStart:
    pass


@dataclass(frozen=True)
class OrderGone:
    remaining: int = 0


Action = Union[
    Loaded, OpenCart, OpenMenu, OrderPlaced, ContinueOrdering,
    ActiveOrdersChanged, Tick, FreshStart, OrderGone,
]


def initial_view(has_order: bool, cart_count: int) -> View:
    if has_order:
        return View.TRACKING
    if cart_count > 0:
        return View.CART
    return View.MENU


def reduce(state: ViewState, action: Action, grace_seconds: float = 10.0) -> ViewState:
    """
    Next view state for an action.

    Automatic promotion to tracking only happens from the menu, only while
    active orders exist, and never inside the grace window that follows a
    manual "continue ordering".
    """
    state = replace(state, announcement=None)

    if isinstance(action, Loaded):
        active = action.active_orders or (1 if action.has_order else 0)
        return ViewState(view=initial_view(action.has_order, action.cart_count), active_orders=active)

    if isinstance(action, OpenCart):
        return replace(state, view=View.CART)

    if isinstance(action, OpenMenu):
        return replace(state, view=View.MENU)

    if isinstance(action, OrderPlaced):
        return replace(
            state,
            view=View.TRACKING,
            active_orders=max(state.active_orders, 1),
            manual_menu_until=None,
            announcement=Announcement.ITEMS_ADDED if action.merged else Announcement.ORDER_PLACED,
        )

    if isinstance(action, ContinueOrdering):
        return replace(
            state,
            view=View.MENU,
            manual_menu_until=action.now + timedelta(seconds=grace_seconds),
        )

    if isinstance(action, ActiveOrdersChanged):
        state = replace(state, active_orders=max(action.count, 0))
        if state.active_orders > 0:
            if state.view == View.MENU and not state.menu_protected(action.now):
                return replace(state, view=View.TRACKING, manual_menu_until=None)
            return state
        if state.view == View.TRACKING:
            return replace(state, view=View.MENU)
        return state

    if isinstance(action, Tick):
        if state.manual_menu_until is not None and not state.menu_protected(action.now):
            state = replace(state, manual_menu_until=None)
            if state.active_orders > 0 and state.view == View.MENU:
                return replace(state, view=View.TRACKING)
        return state

    if isinstance(action, FreshStart):
        return ViewState(view=View.MENU, announcement=Announcement.FRESH_START)

    if isinstance(action, OrderGone):
        remaining = max(action.remaining, 0)
        view = View.TRACKING if remaining and state.view == View.TRACKING else View.MENU
        return ViewState(view=view, active_orders=remaining, announcement=Announcement.ORDER_GONE)

    raise TypeError(f"Unknown action: {action!r}")
