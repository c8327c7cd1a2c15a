"""
Tests for the REST client: paths, response parsing and error mapping
"""

import json

import httpx
import pytest

from ordersync.core.exceptions import (
    BackendError,
    BackendUnavailableError,
    CompletionBlockedError,
    DataIntegrityError,
    OrderNotFoundError,
    RequestTimeoutError,
    TableNotFoundError,
)
from ordersync.schemas import CreateOrderPayload, OrderSearchFilters, OrderStatus
from ordersync.services.backend import HttpOrderBackend


def order_json(order_id=1, status="pending", name="Amira", table=4):
    return {
        "id": order_id,
        "order_number": f"ORD{order_id:05d}",
        "table_id": table,
        "table_number": table,
        "customer_name": name,
        "status": status,
        "total_amount": 24.97,
        "created_at": "2024-05-17T19:00:00Z",
        "updated_at": "2024-05-17T19:00:00Z",
        "items": [
            {
                "id": 1,
                "menu_item_id": 1,
                "menu_item_name": "Butter Chicken",
                "quantity": 1,
                "unit_price": 16.99,
                "special_requests": "mild",
                "created_at": "2024-05-17T19:00:00Z",
            }
        ],
    }


class Recorder:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def make_backend(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    return HttpOrderBackend(base_url="http://api.test", retry_attempts=3, retry_delay=0, client=client)


class TestMutations:
    """Test createOrder / status updates / delete"""

    async def test_create_order_merged_response(self):
        handler = Recorder(httpx.Response(201, json={
            "message": "Items added to existing order",
            "order": order_json(),
            "merged": True,
            "orderId": 1,
            "mergeInfo": {"originalOrderId": 1, "originalOrderNumber": "ORD00001", "itemsAdded": 2, "newTotal": 24.97},
        }))
        backend = make_backend(handler)
        payload = CreateOrderPayload(table_id=4, customer_name="Amira", items=[{"menu_item_id": 1, "quantity": 1}])

        result = await backend.create_order(payload)
        assert result.merged
        assert result.merge_info.items_added == 2
        assert result.order.items[0].name == "Butter Chicken"
        assert result.order.items[0].special_instructions == "mild"
        request = handler.requests[0]
        assert request.method == "POST" and request.url.path == "/orders"
        assert json.loads(request.content)["customer_name"] == "Amira"

    async def test_update_status(self):
        handler = Recorder(httpx.Response(200, json={"message": "ok", "order": order_json(status="preparing")}))
        backend = make_backend(handler)
        order = await backend.update_order_status(1, OrderStatus.PREPARING)
        assert order.status == OrderStatus.PREPARING
        assert handler.requests[0].method == "PATCH"
        assert handler.requests[0].url.path == "/orders/1/status"
        assert json.loads(handler.requests[0].content) == {"status": "preparing"}

    async def test_update_missing_order(self):
        backend = make_backend(Recorder(httpx.Response(404, json={"error": "Order not found"})))
        with pytest.raises(OrderNotFoundError):
            await backend.update_order_status(99, OrderStatus.READY)

    async def test_completion_blocked_by_server(self):
        backend = make_backend(Recorder(httpx.Response(400, json={
            "error": "Customer has other active orders",
            "customerName": "Amira",
            "activeOrders": [order_json(2, status="pending")],
        })))
        with pytest.raises(CompletionBlockedError) as exc:
            await backend.update_order_status(1, OrderStatus.COMPLETED)
        assert [o.id for o in exc.value.blocking_orders] == [2]
        assert exc.value.message == "Customer has other active orders"

    async def test_bulk_update(self):
        handler = Recorder(httpx.Response(200, json={
            "message": "2 orders updated",
            "updatedOrders": [order_json(1, "ready"), order_json(2, "ready")],
        }))
        orders = await make_backend(handler).bulk_update_order_status([1, 2], OrderStatus.READY)
        assert [o.status for o in orders] == [OrderStatus.READY, OrderStatus.READY]
        assert json.loads(handler.requests[0].content) == {"orderIds": [1, 2], "status": "ready"}

    async def test_delete_returns_order_with_table(self):
        handler = Recorder(httpx.Response(200, json={"message": "deleted", "order": order_json(), "tableNumber": 4}))
        order = await make_backend(handler).delete_order(1)
        assert order.id == 1 and order.table_number == 4

    async def test_mutations_are_not_retried(self):
        handler = Recorder(httpx.ConnectError("refused"))
        backend = make_backend(handler)
        with pytest.raises(BackendUnavailableError):
            await backend.update_order_status(1, OrderStatus.PREPARING)
        assert len(handler.requests) == 1

    async def test_server_error(self):
        backend = make_backend(Recorder(httpx.Response(500, json={"error": "Failed to update order"})))
        with pytest.raises(BackendError) as exc:
            await backend.update_order_status(1, OrderStatus.PREPARING)
        assert exc.value.status_code == 500
        assert exc.value.detail == "Failed to update order"


class TestReads:
    """Test read endpoints and retries"""

    async def test_reads_retry_transport_errors(self):
        handler = Recorder(
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            httpx.Response(200, json=[order_json(1), order_json(2)]),
        )
        orders = await make_backend(handler).fetch_all_orders()
        assert [o.id for o in orders] == [1, 2]
        assert len(handler.requests) == 3

    async def test_read_gives_up_after_attempts(self):
        handler = Recorder(httpx.ReadTimeout("slow"))
        with pytest.raises(RequestTimeoutError):
            await make_backend(handler).get_order_by_id(1)
        assert len(handler.requests) == 3

    async def test_orders_by_table_path(self):
        handler = Recorder(httpx.Response(200, json=[order_json()]))
        await make_backend(handler).get_orders_by_table(4)
        assert handler.requests[0].url.path == "/orders/table-number/4"

    async def test_search_params(self):
        handler = Recorder(httpx.Response(200, json=[]))
        filters = OrderSearchFilters(status=OrderStatus.READY, query="ami")
        await make_backend(handler).search_orders(filters)
        params = handler.requests[0].url.params
        assert params["status"] == "ready"
        assert params["query"] == "ami"
        assert "table_id" not in params

    async def test_table_by_qr_code(self):
        handler = Recorder(httpx.Response(404, json={"error": "Table not found"}))
        with pytest.raises(TableNotFoundError):
            await make_backend(handler).get_table_by_qr_code("QR-T99")
        assert handler.requests[0].url.path == "/tables/qr/QR-T99"

    async def test_stats_aliases(self):
        handler = Recorder(httpx.Response(200, json={"total_orders": 5, "pending_orders": 2, "ready_orders": 1}))
        stats = await make_backend(handler).fetch_order_stats()
        assert (stats.total, stats.pending, stats.ready) == (5, 2, 1)

    async def test_invalid_json_is_integrity_error(self):
        handler = Recorder(httpx.Response(200, content=b"<html>oops</html>"))
        with pytest.raises(DataIntegrityError):
            await make_backend(handler).fetch_tables()

    async def test_health_check(self):
        assert await make_backend(Recorder(httpx.Response(200, json={"status": "ok"}))).health_check()
        assert not await make_backend(Recorder(httpx.Response(503, text="down"))).health_check()
