"""
WebSocket Realtime Channel

Production channel over a websocket connection to the push server.

Wire format (JSON text frames):
    client -> server  {"action": "join" | "leave", "room": "<room>"}
    server -> client  {"event": "<name>", "data": {...}}

Reconnects with capped exponential backoff (tenacity): initial delay
REALTIME_RECONNECT_DELAY, doubling up to REALTIME_RECONNECT_MAX_DELAY, for
REALTIME_RECONNECT_ATTEMPTS attempts. After that the channel is failed
and only a manual reconnect() restarts it.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import websockets
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from websockets.exceptions import ConnectionClosed, WebSocketException

from ordersync.core.config import get_settings
from ordersync.core.exceptions import RealtimeConnectionError
from ordersync.services.alerts.base import BaseAlertService
from ordersync.services.realtime.base import BaseRealtimeChannel, ConnectionState

logger = logging.getLogger(__name__)

RETRYABLE = (OSError, asyncio.TimeoutError, WebSocketException)


class WebSocketRealtimeChannel(BaseRealtimeChannel):
    """Realtime channel backed by the websockets client."""

    def __init__(
        self,
        url: Optional[str] = None,
        alerts: Optional[BaseAlertService] = None,
        reconnect_attempts: Optional[int] = None,
        reconnect_delay: Optional[float] = None,
        reconnect_max_delay: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        connector: Optional[Callable[..., Any]] = None,
        **kwargs,
    ):
        settings = get_settings()
        kwargs.setdefault("sound_enabled", settings.sound_enabled)
        kwargs.setdefault("desktop_notifications_enabled", settings.desktop_notifications_enabled)
        super().__init__(alerts=alerts, **kwargs)

        self.url = url or settings.realtime_url
        self.reconnect_attempts = reconnect_attempts or settings.realtime_reconnect_attempts
        self.reconnect_delay = settings.realtime_reconnect_delay if reconnect_delay is None else reconnect_delay
        self.reconnect_max_delay = reconnect_max_delay or settings.realtime_reconnect_max_delay
        self.connect_timeout = connect_timeout or settings.realtime_connect_timeout
        self._connector = connector or websockets.connect

        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def provider_name(self) -> str:
        return "websocket"

    # ==========================================================================
    # CONNECTION
    # ==========================================================================

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Realtime connect attempt {retry_state.attempt_number}/{self.reconnect_attempts} "
            f"failed ({error}); retrying in {wait:.1f}s"
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.reconnect_attempts),
            wait=wait_exponential(multiplier=self.reconnect_delay, max=self.reconnect_max_delay),
            retry=retry_if_exception_type(RETRYABLE),
            before_sleep=self._log_retry,
            reraise=False,
        )

    async def _open(self):
        return await self._connector(self.url, open_timeout=self.connect_timeout)

    async def _open_with_backoff(self) -> None:
        try:
            async for attempt in self._retrying():
                with attempt:
                    self._ws = await self._open()
        except RetryError as e:
            cause = e.last_attempt.exception()
            self.reload_required = True
            await self._set_state(ConnectionState.FAILED)
            logger.error(
                f"Realtime connection failed after {self.reconnect_attempts} attempts: {cause}"
            )
            raise RealtimeConnectionError(
                f"Could not connect to {self.url} after {self.reconnect_attempts} attempts"
            ) from cause

        await self._set_state(ConnectionState.CONNECTED)
        await self._rejoin_rooms()
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def connect(self) -> None:
        if self.connected:
            return
        self._closing = False
        await self._set_state(ConnectionState.CONNECTING)
        await self._open_with_backoff()

    async def disconnect(self) -> None:
        self._closing = True
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if self._ws is not None:
            try:
                await self._ws.close()
            except WebSocketException as e:
                logger.debug(f"Error closing websocket: {e}")
            self._ws = None
        await self._cancel_side_effects()
        await self._set_state(ConnectionState.CLOSED)

    # ==========================================================================
    # FRAMES
    # ==========================================================================

    async def _send(self, payload: dict) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            logger.warning(f"Send failed, connection closed: {e}")

    async def _send_join(self, room: str) -> None:
        await self._send({"action": "join", "room": room})

    async def _send_leave(self, room: str) -> None:
        await self._send({"action": "leave", "room": room})

    async def _handle_frame(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", "replace")
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring non-JSON frame: {raw[:80]!r}")
            return
        if not isinstance(frame, dict) or "event" not in frame:
            logger.warning(f"Ignoring frame without event: {frame!r}")
            return
        await self.dispatch(frame["event"], frame.get("data") or {})

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                await self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.warning(f"Realtime connection lost: {e}")
        except asyncio.CancelledError:
            raise

        if self._closing:
            return
        await self._recover()

    async def _recover(self) -> None:
        """Reconnect after an unexpected close; surfaces see the degraded flag meanwhile."""
        self._ws = None
        self._reader = None
        await self._set_state(ConnectionState.DEGRADED)
        try:
            await self._open_with_backoff()
        except RealtimeConnectionError:
            # state is failed, a manual reload is required
            return
        logger.info("Realtime connection restored")
