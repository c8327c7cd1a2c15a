"""
Tests for the order status graph and the completion guard
"""

from datetime import datetime, timedelta, timezone

import pytest

from ordersync.core.exceptions import CompletionBlockedError, InvalidTransitionError
from ordersync.schemas import Order, OrderStatus
from ordersync.services import transition_policy

ALLOWED = {
    (OrderStatus.PENDING, OrderStatus.PREPARING),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.PREPARING, OrderStatus.READY),
    (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    (OrderStatus.READY, OrderStatus.COMPLETED),
    (OrderStatus.READY, OrderStatus.CANCELLED),
}

T0 = datetime(2024, 5, 17, 19, 0, tzinfo=timezone.utc)


def make_order(order_id, status=OrderStatus.PENDING, name="Amira", table=4, minutes=0):
    return Order(
        id=order_id,
        order_number=f"ORD{order_id:05d}",
        table_id=table,
        table_number=table,
        customer_name=name,
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
    )


class TestStatusGraph:
    """Test the transition graph"""

    @pytest.mark.parametrize("current", list(OrderStatus))
    @pytest.mark.parametrize("target", list(OrderStatus))
    def test_can_transition_matches_graph(self, current, target):
        assert transition_policy.can_transition(current, target) == ((current, target) in ALLOWED)

    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    def test_terminal_statuses_have_no_edges(self, status):
        assert transition_policy.is_terminal(status)
        assert transition_policy.STATUS_FLOW[status] == frozenset()
        assert transition_policy.next_status(status) is None

    def test_accepts_plain_strings(self):
        assert transition_policy.can_transition("pending", "preparing")
        assert transition_policy.can_transition("READY", "completed")
        assert not transition_policy.can_transition("pending", "served")

    def test_ensure_transition_names_both_statuses(self):
        with pytest.raises(InvalidTransitionError) as exc:
            transition_policy.ensure_transition(OrderStatus.COMPLETED, OrderStatus.PREPARING)
        assert exc.value.current == "completed"
        assert exc.value.attempted == "preparing"
        assert "completed" in exc.value.message and "preparing" in exc.value.message

    def test_next_status_walks_forward(self):
        status = OrderStatus.PENDING
        path = []
        while status is not None:
            path.append(status)
            status = transition_policy.next_status(status)
        assert path == [OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED]

    def test_status_step_and_priority(self):
        assert transition_policy.status_step(OrderStatus.READY) == 3
        assert transition_policy.status_step(OrderStatus.CANCELLED) == 0
        assert transition_policy.status_priority(OrderStatus.PENDING) < transition_policy.status_priority(OrderStatus.READY)
        assert transition_policy.status_priority(OrderStatus.CANCELLED) > transition_policy.status_priority(OrderStatus.COMPLETED)

    def test_is_forward(self):
        assert transition_policy.is_forward(OrderStatus.PREPARING, OrderStatus.PREPARING)
        assert transition_policy.is_forward(OrderStatus.PENDING, OrderStatus.READY)
        assert transition_policy.is_forward(OrderStatus.READY, OrderStatus.CANCELLED)
        assert not transition_policy.is_forward(OrderStatus.READY, OrderStatus.PREPARING)
        assert not transition_policy.is_forward(OrderStatus.CANCELLED, OrderStatus.PENDING)
        assert not transition_policy.is_forward(OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class TestCompletionGuard:
    """Test the sibling-order completion guard"""

    def test_allowed_without_siblings(self):
        order = make_order(1, OrderStatus.READY)
        check = transition_policy.can_complete(order, [order])
        assert check.allowed
        assert check.blocking_orders == []

    def test_blocked_by_active_sibling(self):
        order = make_order(1, OrderStatus.READY)
        sibling = make_order(2, OrderStatus.PENDING, minutes=12)
        check = transition_policy.can_complete(order, [order, sibling])
        assert not check.allowed
        assert [o.id for o in check.blocking_orders] == [2]

    def test_name_match_ignores_case_and_whitespace(self):
        order = make_order(1, OrderStatus.READY, name="Amira")
        sibling = make_order(2, OrderStatus.PREPARING, name="  amira ")
        assert not transition_policy.can_complete(order, [sibling]).allowed

    def test_other_table_or_customer_does_not_block(self):
        order = make_order(1, OrderStatus.READY)
        others = [
            make_order(2, OrderStatus.PENDING, table=5),
            make_order(3, OrderStatus.PENDING, name="Jonas"),
            make_order(4, OrderStatus.CANCELLED),
            make_order(5, OrderStatus.COMPLETED),
        ]
        assert transition_policy.can_complete(order, others).allowed

    def test_blockers_sorted_oldest_first(self):
        order = make_order(1, OrderStatus.READY)
        newer = make_order(3, OrderStatus.PENDING, minutes=20)
        older = make_order(2, OrderStatus.PREPARING, minutes=5)
        check = transition_policy.can_complete(order, [newer, older])
        assert [o.id for o in check.blocking_orders] == [2, 3]

    def test_ensure_can_complete_raises_with_blockers(self):
        order = make_order(1, OrderStatus.READY)
        sibling = make_order(2, OrderStatus.PENDING)
        with pytest.raises(CompletionBlockedError) as exc:
            transition_policy.ensure_can_complete(order, [sibling])
        assert exc.value.order_id == 1
        assert exc.value.customer_name == "Amira"
        assert [o.id for o in exc.value.blocking_orders] == [2]
