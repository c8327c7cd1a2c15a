"""
Tests for the customer surface: ordering, merge announcements, live
tracking and the fresh-start rules
"""

import asyncio

import pytest

from ordersync.controllers import CustomerController
from ordersync.controllers.view_state import View
from ordersync.core.exceptions import BackendUnavailableError, PolicyViolationError
from ordersync.schemas import OrderStatus
from ordersync.services import merge_tracker
from ordersync.services.alerts import AlertKind
from ordersync.services.sessions import MemorySessionStorage, SessionRepository


@pytest.fixture
async def make_customer(backend, make_channel, repository, settings, clock):
    created = []

    def factory(identifier="4", repo=None, config=None):
        controller = CustomerController(
            identifier, backend, make_channel(), repo or repository, settings=config or settings, clock=clock,
        )
        created.append(controller)
        return controller

    yield factory
    for controller in created:
        await controller.stop()


async def order_as(customer, name="Amira", items=((1, 1),)):
    for menu_item_id, quantity in items:
        await customer.add_item(menu_item_id, f"Item {menu_item_id}", 9.99, quantity)
    return await customer.place_order(name)


class TestStartup:
    """Test table resolution and session restore"""

    async def test_table_number_resolves(self, make_customer):
        customer = make_customer("table-4")
        assert await customer.start() is True
        assert customer.table.table_number == 4
        assert customer.session_id == "4"
        assert customer.view == View.MENU
        assert "table:4" in customer.channel.rooms

    async def test_qr_code_resolves(self, make_customer):
        customer = make_customer("QR-T07")
        assert await customer.start()
        assert customer.table.table_number == 7
        assert customer.session_id == "7"

    async def test_unknown_table_falls_back_to_menu(self, make_customer):
        customer = make_customer("99")
        assert await customer.start() is False
        assert customer.table_fallback
        assert customer.view == View.MENU
        assert customer.notices[0].level == "error"
        with pytest.raises(PolicyViolationError):
            await customer.place_order("Amira")

    async def test_welcome_back_with_saved_cart(self, make_customer, repository):
        first = make_customer()
        await first.start()
        await first.set_customer_name("Amira")
        await first.add_item(1, "Butter Chicken", 16.99, 2)
        await first.stop()

        again = make_customer()
        await again.start()
        assert again.notices[0].message == "Welcome back, Amira!"
        assert again.cart_count == 2
        assert again.view == View.CART

    async def test_resume_tracked_order(self, make_customer):
        first = make_customer()
        await first.start()
        placed = await order_as(first)
        await first.stop()

        again = make_customer()
        await again.start()
        assert again.view == View.TRACKING
        assert again.current_order.id == placed.order.id
        assert f"customer:{placed.order.id}" in again.channel.rooms

    async def test_resume_cancelled_order_waits_for_cooldown(self, make_customer, backend):
        first = make_customer()
        await first.start()
        placed = await order_as(first)
        await first.stop()
        await backend.update_order_status(placed.order.id, OrderStatus.CANCELLED)

        again = make_customer()
        await again.start()
        assert again.view == View.TRACKING
        assert "cooldown" in again.pending_timers

    async def test_resume_deleted_order_is_forgotten(self, make_customer, backend):
        first = make_customer()
        await first.start()
        placed = await order_as(first)
        await first.stop()
        await backend.delete_order(placed.order.id)

        again = make_customer()
        await again.start()
        assert again.session.order_id is None
        assert again.view == View.MENU


class TestOrdering:
    """Test placing and merging orders"""

    async def test_place_order(self, make_customer, backend, repository):
        customer = make_customer()
        await customer.start()
        result = await order_as(customer, items=((1, 2), (2, 1)))

        assert not result.merged
        assert customer.view == View.TRACKING
        assert customer.session.cart == []
        assert customer.session.order_id == result.order.id
        assert customer.notices[-1].message.startswith(f"Order {result.order.order_number} placed")
        assert (await repository.get("4")).order_id == result.order.id
        assert backend.orders[result.order.id].customer_name == "Amira"

    async def test_second_order_is_merged(self, make_customer, clock):
        customer = make_customer()
        await customer.start()
        first = await order_as(customer, items=((1, 1),))

        customer.continue_ordering()
        clock.advance(minutes=12)
        second = await order_as(customer, items=((4, 1),))

        assert second.merged
        assert second.order.id == first.order.id
        assert customer.view == View.TRACKING
        assert customer.notices[-1].message == f"Items added to your order {first.order.order_number}."
        order = customer.current_order
        assert len(order.items) == 2
        assert merge_tracker.has_multiple_sessions(order.items, 5)

    async def test_name_and_cart_required(self, make_customer, backend):
        customer = make_customer()
        await customer.start()
        with pytest.raises(PolicyViolationError):
            await customer.place_order()
        with pytest.raises(PolicyViolationError):
            await customer.place_order("Amira")
        assert "create_order" not in backend.calls

    async def test_transport_failure_keeps_cart(self, make_customer, backend):
        customer = make_customer()
        await customer.start()
        await customer.add_item(1, "Butter Chicken", 16.99)
        backend.failure_rate = 1.0

        with pytest.raises(BackendUnavailableError):
            await customer.place_order("Amira")
        assert customer.cart_count == 1
        assert customer.notices[-1].retry is not None

        backend.failure_rate = 0.0
        result = await customer.retry_notice(customer.notices[-1].id)
        assert result.order.customer_name == "Amira"
        assert customer.cart_count == 0


class TestTracking:
    """Test live status updates and fresh starts"""

    async def test_status_updates_and_ready_alert(self, make_customer, backend, alerts):
        customer = make_customer()
        await customer.start()
        placed = await order_as(customer)

        await backend.update_order_status(placed.order.id, OrderStatus.PREPARING)
        await backend.update_order_status(placed.order.id, OrderStatus.READY)
        await customer.channel.drain_side_effects()

        assert customer.current_order.status == OrderStatus.READY
        assert customer.notices[-1].message == f"Order {placed.order.order_number} is ready!"
        assert AlertKind.COMPLETION in alerts.tones

    async def test_completion_gives_fresh_start(self, make_customer, backend, repository):
        customer = make_customer()
        await customer.start()
        placed = await order_as(customer)
        for status in (OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED):
            await backend.update_order_status(placed.order.id, status)

        assert customer.view == View.MENU
        assert customer.orders == {}
        assert customer.session.is_empty
        assert (await repository.get("4")).is_empty
        assert customer.notices[-1].message == "All done! You can start a new order."

    async def test_cancelling_one_of_two_orders_switches_tracking(self, make_customer, backend, repository, clock):
        first = backend.seed_order(4, "Amira", [(1, 1)])
        clock.advance(minutes=3)
        second = backend.seed_order(4, "Amira", [(2, 1)])
        await repository.set_customer("4", "Amira")
        await repository.set_current_order("4", first.id, first.order_number)

        customer = make_customer()
        await customer.start()
        assert {o.id for o in customer.active_orders()} == {first.id, second.id}

        await backend.update_order_status(first.id, OrderStatus.CANCELLED)
        assert customer.session.order_id == second.id
        assert customer.view == View.TRACKING
        assert "cooldown" not in customer.pending_timers
        assert await repository.get_cancelled_marker("4") is None

    async def test_cancellation_starts_cooldown(self, make_customer, backend, repository):
        customer = make_customer()
        await customer.start()
        placed = await order_as(customer)
        await backend.update_order_status(placed.order.id, OrderStatus.CANCELLED)

        assert customer.current_order.status == OrderStatus.CANCELLED
        assert customer.view == View.TRACKING
        assert "cooldown" in customer.pending_timers
        marker = await repository.get_cancelled_marker("4")
        assert marker.order_id == placed.order.id

    async def test_cooldown_expiry_clears_session(self, make_customer, backend, clock):
        repo = SessionRepository(MemorySessionStorage(), cancelled_cooldown_seconds=0.05, clock=clock)
        customer = make_customer(repo=repo)
        await customer.start()
        placed = await order_as(customer)
        await backend.update_order_status(placed.order.id, OrderStatus.CANCELLED)

        await asyncio.sleep(0.1)
        assert customer.view == View.MENU
        assert customer.session.order_id is None
        assert await repo.get_cancelled_marker("4") is None

    async def test_deleted_order_resets_customer(self, make_customer, backend, repository):
        customer = make_customer()
        await customer.start()
        placed = await order_as(customer)
        await backend.delete_order(placed.order.id)

        assert customer.view == View.MENU
        assert customer.orders == {}
        assert (await repository.get("4")).is_empty
        assert customer.notices[-1].message == f"Your order {placed.order.order_number} was removed by staff."

    async def test_restored_connection_reloads_orders(self, make_customer, backend):
        customer = make_customer()
        await customer.start()
        placed = await order_as(customer)

        await customer.channel.simulate_drop()
        assert customer.degraded
        await backend.update_order_status(placed.order.id, OrderStatus.PREPARING)
        assert customer.current_order.status == OrderStatus.PENDING

        await customer.channel.simulate_restore()
        assert not customer.degraded
        assert customer.current_order.status == OrderStatus.PREPARING

    async def test_other_diner_at_table_is_not_tracked(self, make_customer):
        amira = make_customer()
        jonas = make_customer(repo=SessionRepository(MemorySessionStorage()))
        await amira.start()
        await jonas.start()

        placed = await order_as(amira)
        assert placed.order.id not in jonas.orders
        assert jonas.view == View.MENU

    async def test_continue_ordering_blocks_promotion(self, make_customer, backend, clock, settings):
        config = settings.model_copy(update={"manual_menu_grace_seconds": 0.05})
        customer = make_customer(config=config)
        await customer.start()
        placed = await order_as(customer)

        customer.continue_ordering()
        await backend.update_order_status(placed.order.id, OrderStatus.PREPARING)
        assert customer.view == View.MENU

        clock.advance(seconds=1)
        await asyncio.sleep(0.1)
        assert customer.view == View.TRACKING
