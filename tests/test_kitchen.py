"""
Tests for the kitchen display controller and the shared order board
"""

import asyncio

import pytest

from ordersync.controllers import KitchenController
from ordersync.core.exceptions import BackendUnavailableError, CompletionBlockedError, InvalidTransitionError, OrderNotFoundError
from ordersync.schemas import CreateOrderPayload, OrderStatus
from ordersync.services.alerts import AlertKind
from ordersync.services.backend.mock import MockOrderBackend


@pytest.fixture
async def kitchen(backend, make_channel, settings, clock):
    controller = KitchenController(backend, make_channel(), settings=settings, clock=clock)
    yield controller
    await controller.stop()


def new_order(name="Amira", table=4, items=((1, 1),)):
    return CreateOrderPayload(
        table_id=table,
        customer_name=name,
        items=[{"menu_item_id": m, "quantity": q} for m, q in items],
    )


class TestLoading:
    """Test startup, reload and push updates"""

    async def test_start_loads_queue(self, backend, kitchen):
        backend.seed_order(4, "Amira", [(1, 1)])
        backend.seed_order(5, "Jonas", [(2, 1)], status=OrderStatus.READY)
        backend.seed_order(6, "Lea", [(3, 1)], status=OrderStatus.COMPLETED)

        await kitchen.start()
        assert [o.customer_name for o in kitchen.visible_orders()] == ["Amira", "Jonas"]
        assert [o.customer_name for o in kitchen.completed.values()] == ["Lea"]
        assert kitchen.stats().total == 3
        assert "kitchen" in kitchen.channel.rooms

    async def test_new_order_push_alerts(self, backend, kitchen, alerts):
        await kitchen.start()
        result = await backend.create_order(new_order())
        await kitchen.channel.drain_side_effects()

        assert result.order.id in kitchen.active
        assert alerts.tones == [AlertKind.NOTIFICATION]
        assert kitchen.channel.notifications[0].title == "New Order Received!"
        assert "Table 4" in kitchen.channel.notifications[0].body

    async def test_duplicate_new_order_is_ignored(self, backend, kitchen):
        await kitchen.start()
        result = await backend.create_order(new_order())
        await kitchen.channel.dispatch("new-order", result.order.model_dump(mode="json"))
        assert len(kitchen.active) == 1
        assert len(kitchen.channel.notifications) == 1

    async def test_status_push_for_unknown_order_fetches_it(self, backend, kitchen):
        await kitchen.start()
        order = backend.seed_order(4, "Amira", [(1, 1)])
        await backend.update_order_status(order.id, OrderStatus.PREPARING)
        assert kitchen.active[order.id].status == OrderStatus.PREPARING

    async def test_deleted_push_removes_order(self, backend, kitchen):
        order = backend.seed_order(4, "Amira", [(1, 1)])
        await kitchen.start()
        await backend.delete_order(order.id)
        assert kitchen.get_order(order.id) is None

    async def test_new_items_marks_order_merged(self, backend, kitchen, clock):
        await kitchen.start()
        first = await backend.create_order(new_order(items=((1, 1),)))
        assert not kitchen.is_merged(kitchen.active[first.order.id])

        clock.advance(minutes=15)
        await backend.create_order(new_order(items=((4, 2),)))
        order = kitchen.active[first.order.id]
        assert len(order.items) == 2
        assert kitchen.is_merged(order)
        assert len(kitchen.new_items(order)) == 2

    async def test_reload_failure_adds_retry_notice(self, backend, kitchen):
        await kitchen.start()
        backend.failure_rate = 1.0
        assert not await kitchen.reload()
        notice = kitchen.notices[-1]
        assert notice.level == "error" and notice.retry is not None

        backend.failure_rate = 0.0
        assert await kitchen.retry_notice(notice.id) is True
        assert kitchen.notices == []

    async def test_offline_start_still_loads(self, backend, settings, clock, make_channel):
        backend.seed_order(4, "Amira", [(1, 1)])
        kitchen = KitchenController(backend, make_channel(fail_connects=1), settings=settings, clock=clock)
        await kitchen.start()
        assert len(kitchen.active) == 1
        assert kitchen.notices[0].level == "warning"

        await kitchen.reconnect()
        assert kitchen.channel.connected
        await kitchen.stop()

    async def test_connection_drop_and_restore_reloads(self, backend, kitchen):
        await kitchen.start()
        seen = []
        kitchen.on_change(lambda controller: seen.append(controller.degraded))

        await kitchen.channel.simulate_drop()
        assert kitchen.degraded
        missed = await backend.create_order(new_order())
        assert missed.order.id not in kitchen.active

        await kitchen.channel.simulate_restore()
        assert not kitchen.degraded
        assert seen[0] is True and seen[-1] is False
        assert missed.order.id in kitchen.active


class TestStatusChanges:
    """Test guarded status changes"""

    async def test_advance_walks_the_flow(self, backend, kitchen, alerts):
        order = backend.seed_order(4, "Amira", [(1, 1)])
        await kitchen.start()

        assert (await kitchen.advance(order.id)).status == OrderStatus.PREPARING
        assert (await kitchen.advance(order.id)).status == OrderStatus.READY
        await kitchen.channel.drain_side_effects()
        assert AlertKind.COMPLETION in alerts.tones

        assert (await kitchen.advance(order.id)).status == OrderStatus.COMPLETED
        with pytest.raises(InvalidTransitionError):
            await kitchen.advance(order.id)

    async def test_finished_order_leaves_active_after_grace(self, backend, kitchen):
        order = backend.seed_order(4, "Amira", [(1, 1)], status=OrderStatus.READY)
        await kitchen.start()
        await kitchen.update_status(order.id, OrderStatus.COMPLETED)

        assert order.id in kitchen.active
        assert f"settle:{order.id}" in kitchen.pending_timers
        await asyncio.sleep(0.1)
        assert order.id not in kitchen.active
        assert kitchen.completed[order.id].status == OrderStatus.COMPLETED
        assert not set(kitchen.active) & set(kitchen.completed)

    async def test_completed_to_preparing_rejected_without_call(self, backend, kitchen):
        order = backend.seed_order(4, "Amira", [(1, 1)], status=OrderStatus.COMPLETED)
        await kitchen.start()
        calls = list(backend.calls)

        with pytest.raises(InvalidTransitionError) as exc:
            await kitchen.update_status(order.id, OrderStatus.PREPARING)
        assert exc.value.current == "completed"
        assert exc.value.attempted == "preparing"
        assert backend.calls == calls

    async def test_completion_blocked_by_sibling(self, backend, kitchen):
        first = backend.seed_order(4, "Amira", [(1, 1)], status=OrderStatus.READY)
        sibling = backend.seed_order(4, "Amira", [(2, 1)])
        await kitchen.start()
        calls = list(backend.calls)

        with pytest.raises(CompletionBlockedError) as exc:
            await kitchen.update_status(first.id, OrderStatus.COMPLETED)
        assert [o.id for o in exc.value.blocking_orders] == [sibling.id]
        assert backend.calls == calls
        assert kitchen.active[first.id].status == OrderStatus.READY

    async def test_status_push_without_timestamp_cannot_go_back(self, backend, hub, kitchen):
        order = backend.seed_order(4, "Amira", [(1, 1)], status=OrderStatus.READY)
        await kitchen.start()

        await hub.emit(["kitchen"], "order-status-update", {"orderId": order.id, "status": "preparing"})
        assert kitchen.active[order.id].status == OrderStatus.READY

        await hub.emit(["kitchen"], "order-status-update", {"orderId": order.id, "status": "completed"})
        assert kitchen.get_order(order.id).status == OrderStatus.COMPLETED

    async def test_unknown_order(self, kitchen):
        await kitchen.start()
        with pytest.raises(OrderNotFoundError):
            await kitchen.update_status(404, OrderStatus.PREPARING)

    async def test_late_response_does_not_undo_newer_push(self, hub, clock, settings, make_channel):
        class LateResponseBackend(MockOrderBackend):
            """Answers with the preparing order after a ready push went out."""

            async def update_order_status(self, order_id, status):
                stale = await super().update_order_status(order_id, status)
                self.clock.advance(seconds=30)
                await super().update_order_status(order_id, OrderStatus.READY)
                return stale

        backend = LateResponseBackend(hub=hub, clock=clock)
        order = backend.seed_order(4, "Amira", [(1, 1)])
        kitchen = KitchenController(backend, make_channel(), settings=settings, clock=clock)
        await kitchen.start()

        result = await kitchen.update_status(order.id, OrderStatus.PREPARING)
        assert result.status == OrderStatus.READY
        assert kitchen.active[order.id].status == OrderStatus.READY
        await kitchen.stop()

    async def test_transport_failure_keeps_state(self, backend, kitchen):
        order = backend.seed_order(4, "Amira", [(1, 1)])
        await kitchen.start()
        backend.failure_rate = 1.0

        with pytest.raises(BackendUnavailableError):
            await kitchen.advance(order.id)
        assert kitchen.active[order.id].status == OrderStatus.PENDING
        assert kitchen.notices[-1].retry is not None


class TestQueueView:
    """Test filters, sorting and sound"""

    async def test_filter_and_sort(self, backend, kitchen, clock):
        backend.seed_order(1, "A", [(1, 1)])
        clock.advance(minutes=1)
        backend.seed_order(2, "B", [(1, 1)], status=OrderStatus.PREPARING)
        clock.advance(minutes=1)
        backend.seed_order(3, "C", [(1, 1)])
        await kitchen.start()

        kitchen.set_filter("pending")
        assert [o.customer_name for o in kitchen.visible_orders()] == ["C", "A"]
        kitchen.set_filter("all")
        kitchen.set_sort("time-oldest")
        assert [o.customer_name for o in kitchen.visible_orders()] == ["A", "B", "C"]

    async def test_toggle_sound(self, kitchen):
        assert kitchen.channel.sound_enabled
        assert kitchen.toggle_sound() is False
        assert kitchen.toggle_sound() is True
