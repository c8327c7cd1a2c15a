"""
HTTP Order Backend

Production client for the ordering REST API using httpx.

- Idempotent reads are retried on network/timeout errors with tenacity
  (REQUEST_RETRY_ATTEMPTS attempts, linearly growing delay)
- Mutations (create, status change, delete) are one-shot; failures are
  surfaced to the caller with a retry affordance
- Error mapping:
    timeout               -> RequestTimeoutError
    connection failure    -> BackendUnavailableError
    404                   -> OrderNotFoundError / TableNotFoundError
    400/409 + activeOrders-> CompletionBlockedError
    other 4xx/5xx         -> BackendError

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Any, Callable, List, Optional, Sequence
from urllib.parse import quote

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ordersync.core.config import get_settings
from ordersync.core.exceptions import (
    BackendError,
    BackendUnavailableError,
    CompletionBlockedError,
    DataIntegrityError,
    OrderNotFoundError,
    RequestTimeoutError,
    TableNotFoundError,
    TransportError,
)
from ordersync.schemas import (
    CreateOrderPayload,
    CreateOrderResult,
    Order,
    OrderSearchFilters,
    OrderStats,
    OrderStatus,
    Table,
)
from ordersync.services.backend.base import BaseOrderBackend

logger = logging.getLogger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Backend read failed ({error}), attempt {retry_state.attempt_number}; retrying")


class HttpOrderBackend(BaseOrderBackend):
    """Order backend over the REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_seconds
        self.retry_attempts = retry_attempts or settings.request_retry_attempts
        self.retry_delay = settings.request_retry_delay if retry_delay is None else retry_delay
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"},
        )
        logger.info(f"HttpOrderBackend initialized ({self.base_url})")

    @property
    def provider_name(self) -> str:
        return "http"

    async def close(self) -> None:
        await self.client.aclose()

    # ==========================================================================
    # TRANSPORT
    # ==========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict] = None,
        not_found: Optional[Callable[[], Exception]] = None,
        order_id: Any = None,
    ) -> Any:
        try:
            response = await self.client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out")
            raise RequestTimeoutError(f"Request timeout: {method} {path}") from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise BackendUnavailableError(f"Unable to connect to server: {e}") from e

        body = self._decode(response)

        if response.status_code == 404:
            if not_found is not None:
                raise not_found()
            raise BackendError(404, self._detail(body, response))

        if response.status_code in (400, 409) and isinstance(body, dict) and "activeOrders" in body:
            blocking = self._parse_orders(body.get("activeOrders") or [])
            raise CompletionBlockedError(
                order_id,
                blocking_orders=blocking,
                customer_name=body.get("customerName"),
                message=body.get("error"),
            )

        if response.status_code >= 400:
            detail = self._detail(body, response)
            logger.error(f"{method} {path} -> {response.status_code}: {detail}")
            raise BackendError(response.status_code, detail)

        return body

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            if response.status_code >= 400:
                return response.text
            raise DataIntegrityError(f"Backend returned invalid JSON ({response.status_code})")

    @staticmethod
    def _detail(body: Any, response: httpx.Response) -> str:
        if isinstance(body, dict):
            return body.get("error") or body.get("message") or body.get("detail") or f"Server error: {response.status_code}"
        return str(body or f"Server error: {response.status_code}")

    async def _read(self, path: str, params: Optional[dict] = None, **kwargs) -> Any:
        """GET with retries on transport failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception_type((RequestTimeoutError, BackendUnavailableError)),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request("GET", path, params=params, **kwargs)

    # ==========================================================================
    # PARSING
    # ==========================================================================

    @staticmethod
    def _parse_order(data: Any) -> Order:
        if isinstance(data, dict) and isinstance(data.get("order"), dict):
            data = data["order"]
        try:
            return Order.model_validate(data)
        except ValidationError as e:
            raise DataIntegrityError(f"Malformed order from backend: {e}") from e

    @classmethod
    def _parse_orders(cls, data: Any) -> List[Order]:
        if isinstance(data, dict):
            data = data.get("orders") or data.get("updatedOrders") or []
        return [cls._parse_order(item) for item in data or []]

    # ==========================================================================
    # MUTATIONS
    # ==========================================================================

    async def create_order(self, payload: CreateOrderPayload) -> CreateOrderResult:
        body = await self._request("POST", "/orders", json=payload.model_dump(exclude_none=True))
        try:
            result = CreateOrderResult.model_validate(body)
        except ValidationError as e:
            raise DataIntegrityError(f"Malformed createOrder response: {e}") from e
        logger.info(
            f"Order {result.order.display_number} "
            f"{'merged' if result.merged else 'created'} for table {payload.table_id}"
        )
        return result

    async def update_order_status(self, order_id: int, status: OrderStatus) -> Order:
        body = await self._request(
            "PATCH",
            f"/orders/{order_id}/status",
            json={"status": OrderStatus(status).value},
            not_found=lambda: OrderNotFoundError(order_id),
            order_id=order_id,
        )
        return self._parse_order(body)

    async def bulk_update_order_status(self, order_ids: Sequence[int], status: OrderStatus) -> List[Order]:
        body = await self._request(
            "PATCH",
            "/orders/bulk-status",
            json={"orderIds": list(order_ids), "status": OrderStatus(status).value},
        )
        return self._parse_orders(body)

    async def delete_order(self, order_id: int) -> Optional[Order]:
        body = await self._request(
            "DELETE",
            f"/orders/{order_id}",
            not_found=lambda: OrderNotFoundError(order_id),
        )
        if isinstance(body, dict) and isinstance(body.get("order"), dict):
            return Order.model_validate({**body["order"], "table_number": body.get("tableNumber")})
        return None

    # ==========================================================================
    # READS
    # ==========================================================================

    async def search_orders(self, filters: Optional[OrderSearchFilters] = None) -> List[Order]:
        params = filters.as_params() if filters else {}
        return self._parse_orders(await self._read("/orders/search", params=params))

    async def get_order_by_id(self, order_id: int) -> Order:
        body = await self._read(f"/orders/{order_id}", not_found=lambda: OrderNotFoundError(order_id))
        return self._parse_order(body)

    async def get_orders_by_table(self, table_number: int) -> List[Order]:
        return self._parse_orders(await self._read(f"/orders/table-number/{table_number}"))

    async def get_table_by_qr_code(self, code: str) -> Table:
        body = await self._read(
            f"/tables/qr/{quote(code, safe='')}",
            not_found=lambda: TableNotFoundError(code),
        )
        try:
            return Table.model_validate(body)
        except ValidationError as e:
            raise DataIntegrityError(f"Malformed table from backend: {e}") from e

    async def fetch_tables(self) -> List[Table]:
        body = await self._read("/tables")
        return [Table.model_validate(item) for item in body or []]

    async def fetch_all_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        params = {"status": OrderStatus(status).value} if status else None
        return self._parse_orders(await self._read("/orders", params=params))

    async def fetch_order_stats(self) -> OrderStats:
        return OrderStats.model_validate(await self._read("/orders/stats") or {})

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/health")
            return True
        except (TransportError, BackendError, DataIntegrityError) as e:
            logger.warning(f"Backend health check failed: {e}")
            return False
