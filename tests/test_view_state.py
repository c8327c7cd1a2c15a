"""
Tests for the customer view reducer and the kitchen queue ordering
"""

from datetime import datetime, timedelta, timezone

import pytest

from ordersync.controllers import queue, view_state
from ordersync.controllers.view_state import Announcement, View, ViewState
from ordersync.schemas import Order, OrderStatus

T0 = datetime(2024, 5, 17, 19, 0, tzinfo=timezone.utc)


class TestViewReducer:
    """Test view selection"""

    @pytest.mark.parametrize("has_order,cart,expected", [
        (True, 3, View.TRACKING),
        (False, 2, View.CART),
        (False, 0, View.MENU),
    ])
    def test_initial_view(self, has_order, cart, expected):
        state = view_state.reduce(ViewState(), view_state.Loaded(has_order=has_order, cart_count=cart))
        assert state.view == expected

    def test_order_placed_announces(self):
        state = view_state.reduce(ViewState(view=View.CART), view_state.OrderPlaced(merged=False))
        assert state.view == View.TRACKING
        assert state.announcement == Announcement.ORDER_PLACED
        merged = view_state.reduce(ViewState(view=View.CART), view_state.OrderPlaced(merged=True))
        assert merged.announcement == Announcement.ITEMS_ADDED

    def test_continue_ordering_blocks_promotion_for_grace(self):
        state = ViewState(view=View.TRACKING, active_orders=1)
        state = view_state.reduce(state, view_state.ContinueOrdering(now=T0), grace_seconds=10)
        assert state.view == View.MENU

        state = view_state.reduce(state, view_state.ActiveOrdersChanged(count=1, now=T0 + timedelta(seconds=5)))
        assert state.view == View.MENU

        state = view_state.reduce(state, view_state.Tick(now=T0 + timedelta(seconds=11)))
        assert state.view == View.TRACKING
        assert state.manual_menu_until is None

    def test_promotion_only_from_menu(self):
        cart = ViewState(view=View.CART)
        assert view_state.reduce(cart, view_state.ActiveOrdersChanged(count=1, now=T0)).view == View.CART
        menu = ViewState(view=View.MENU)
        assert view_state.reduce(menu, view_state.ActiveOrdersChanged(count=1, now=T0)).view == View.TRACKING

    def test_no_active_orders_leaves_tracking(self):
        state = ViewState(view=View.TRACKING, active_orders=1)
        assert view_state.reduce(state, view_state.ActiveOrdersChanged(count=0, now=T0)).view == View.MENU

    def test_fresh_start_and_order_gone(self):
        state = ViewState(view=View.TRACKING, active_orders=2)
        fresh = view_state.reduce(state, view_state.FreshStart())
        assert fresh == ViewState(view=View.MENU, announcement=Announcement.FRESH_START)

        gone = view_state.reduce(state, view_state.OrderGone(remaining=1))
        assert gone.view == View.TRACKING and gone.announcement == Announcement.ORDER_GONE
        assert view_state.reduce(state, view_state.OrderGone(remaining=0)).view == View.MENU

    def test_announcement_is_one_shot(self):
        state = view_state.reduce(ViewState(), view_state.OrderPlaced())
        assert view_state.reduce(state, view_state.OpenMenu()).announcement is None

    def test_unknown_action(self):
        with pytest.raises(TypeError):
            view_state.reduce(ViewState(), object())


def order(order_id, status, minutes=0, table=1, name="A", amount=10.0):
    return Order(
        id=order_id,
        table_number=table,
        customer_name=name,
        status=status,
        total_amount=amount,
        created_at=T0 + timedelta(minutes=minutes),
    )


class TestKitchenQueue:
    """Test filter_and_sort"""

    @pytest.fixture
    def orders(self):
        return [
            order(1, OrderStatus.READY, minutes=0, table=3, name="carla", amount=30),
            order(2, OrderStatus.PENDING, minutes=5, table=1, name="Ben", amount=12),
            order(3, OrderStatus.PREPARING, minutes=2, table=2, name="amy", amount=50),
            order(4, OrderStatus.PENDING, minutes=9, table=4, name="Dan", amount=8),
        ]

    def test_priority_breaks_ties_newest_first(self, orders):
        assert [o.id for o in queue.filter_and_sort(orders)] == [4, 2, 3, 1]

    @pytest.mark.parametrize("key,expected", [
        ("newest", [4, 2, 3, 1]),
        ("time", [4, 2, 3, 1]),
        ("oldest", [1, 3, 2, 4]),
        ("table", [2, 3, 1, 4]),
        ("customer", [3, 2, 1, 4]),
        ("amount", [3, 1, 2, 4]),
        ("amount-low", [4, 2, 1, 3]),
        ("bogus", [4, 2, 3, 1]),
    ])
    def test_sort_keys(self, orders, key, expected):
        assert [o.id for o in queue.filter_and_sort(orders, queue.ALL, key)] == expected

    def test_status_filter_sorts_newest(self, orders):
        assert [o.id for o in queue.filter_and_sort(orders, "pending", "oldest")] == [4, 2]
        assert queue.filter_and_sort(orders, OrderStatus.COMPLETED) == []

    def test_pure_function(self, orders):
        before = list(orders)
        queue.filter_and_sort(orders, queue.ALL, queue.SortKey.TABLE)
        assert orders == before
