"""WebSocket client for the live BTC price stream.

Maintains one connection to the trading bot's price feed, keeps the latest
snapshot, fans each update out to subscribers, and reconnects on its own
after transient disconnects.

Features:
- Token-authenticated stream URL (token passed as a query parameter)
- Ordered subscriber fan-out with per-registration unsubscribe handles
- Exponential backoff reconnection (1s doubling to 30s, 5 attempts)
- Deliberate disconnects (close code 1000) never trigger a reconnect
- Keepalive pings handled by the websockets library

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED (retry) -> ...
    ... -> ERROR (terminal, reconnect budget spent)

Usage:
    from btcdash.auth.tokens import TokenStore
    from btcdash.pricefeed.client import PriceStreamClient

    store = TokenStore()
    client = PriceStreamClient.from_settings(store.get_auth_token)
    await client.connect()
    unsubscribe = client.on_price_update(lambda price: print(price))

    price = await client.get_bitcoin_price()

    unsubscribe()
    await client.disconnect()
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from pydantic import ValidationError

from btcdash.common.config import Settings, get_settings
from btcdash.common.logging import get_logger
from btcdash.common.metrics import (
    PRICE_WS_CONNECTED,
    PRICE_WS_MESSAGES_TOTAL,
    PRICE_WS_RECONNECTS_TOTAL,
)
from btcdash.pricefeed.emitter import Emitter
from btcdash.pricefeed.exceptions import (
    ConnectInProgressError,
    PriceFeedConfigError,
    PriceFeedConnectionError,
    PriceFeedError,
    PriceMessageError,
    PriceTimeoutError,
)
from btcdash.pricefeed.models import ConnectionStatus, PriceSnapshot
from btcdash.pricefeed.urls import DEFAULT_STREAM_PATH, build_stream_url, strip_token

logger = get_logger("PRICE")

TokenProvider = Callable[[], str | None]
ConnectFactory = Callable[[str], Awaitable[Any]]

NORMAL_CLOSURE = 1000


def websocket_connect_factory(open_timeout: float) -> ConnectFactory:
    """Return a connect factory that opens a websockets client connection."""

    async def _connect(url: str) -> Any:
        return await websockets.connect(url, open_timeout=open_timeout)

    return _connect


class PriceStreamClient:
    """Resilient client for the server-pushed BTC price feed.

    One instance owns at most one transport at a time. All state is touched
    only from the event loop that runs the client, so no locking is needed.

    Args:
        token_provider: Callable returning the current auth token (or None).
        api_url: Trading bot API origin; the stream origin is derived from it.
        ws_url: Explicit stream origin, overriding api_url.
        path: Stream path on the origin.
        max_reconnect_attempts: Consecutive failed attempts before giving up.
        initial_retry_delay: First backoff delay in seconds.
        max_retry_delay: Backoff ceiling in seconds.
        price_request_timeout: Default timeout for get_bitcoin_price().
        connect_factory: Coroutine function opening a transport for a URL.
            Defaults to websockets.connect.
    """

    MAX_RECONNECT_ATTEMPTS = 5
    INITIAL_RETRY_DELAY = 1.0  # seconds
    MAX_RETRY_DELAY = 30.0  # seconds
    PRICE_REQUEST_TIMEOUT = 10.0  # seconds
    OPEN_TIMEOUT = 10.0  # seconds

    def __init__(
        self,
        token_provider: TokenProvider,
        api_url: str | None = None,
        ws_url: str | None = None,
        path: str = DEFAULT_STREAM_PATH,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        initial_retry_delay: float = INITIAL_RETRY_DELAY,
        max_retry_delay: float = MAX_RETRY_DELAY,
        price_request_timeout: float = PRICE_REQUEST_TIMEOUT,
        connect_factory: ConnectFactory | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._api_url = api_url
        self._ws_url = ws_url
        self._path = path
        self._max_reconnect_attempts = max_reconnect_attempts
        self._initial_retry_delay = initial_retry_delay
        self._max_retry_delay = max_retry_delay
        self._price_request_timeout = price_request_timeout
        self._connect_factory = connect_factory or websocket_connect_factory(self.OPEN_TIMEOUT)

        self._status = ConnectionStatus.DISCONNECTED
        self._retry_count = 0
        self._retry_delay = initial_retry_delay
        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        # Bumped by every deliberate close so in-flight opens can tell they were superseded
        self._generation = 0
        self._latest: PriceSnapshot | None = None
        self._last_error: PriceFeedError | None = None

        self._prices: Emitter[float] = Emitter("price")
        self._snapshots: Emitter[PriceSnapshot] = Emitter("snapshot")
        self._errors: Emitter[PriceFeedError] = Emitter("error")
        self._statuses: Emitter[ConnectionStatus] = Emitter("status")

    @classmethod
    def from_settings(
        cls,
        token_provider: TokenProvider,
        settings: Settings | None = None,
        connect_factory: ConnectFactory | None = None,
    ) -> PriceStreamClient:
        """Build a client configured from application settings."""
        settings = settings or get_settings()
        return cls(
            token_provider,
            api_url=settings.api_url,
            ws_url=settings.price_ws_url,
            path=settings.price_ws_path,
            max_reconnect_attempts=settings.price_max_reconnect_attempts,
            initial_retry_delay=settings.price_initial_retry_delay,
            max_retry_delay=settings.price_max_retry_delay,
            price_request_timeout=settings.price_request_timeout,
            connect_factory=connect_factory
            or websocket_connect_factory(settings.price_open_timeout),
        )

    # ─── Public API ───

    async def connect(self) -> None:
        """Open the price stream.

        No-op when already connected. Cancels a pending scheduled reconnect
        and connects immediately. From the terminal ERROR state the backoff
        budget is reset first.

        Raises:
            ConnectInProgressError: Another connection attempt is still opening.
            PriceFeedConfigError: No auth token is available. Not retried.
            PriceFeedConnectionError: The transport failed to open. A
                reconnect is scheduled unless the budget is spent.
        """
        if self._status == ConnectionStatus.CONNECTING:
            raise ConnectInProgressError("Price stream connection already in progress")
        if self._status == ConnectionStatus.CONNECTED:
            return

        self._cancel_reconnect()
        if self._status == ConnectionStatus.ERROR:
            self._reset_backoff()

        await self._open()

    async def disconnect(self) -> None:
        """Deliberately close the stream.

        Cancels any pending reconnect, resets the backoff state, and drops
        every price and snapshot subscriber. Error and status observers stay
        registered. A close event reported later by the old transport is
        ignored.
        """
        self._generation += 1
        self._cancel_reconnect()
        await self._close_transport(reason="client disconnect")
        self._reset_backoff()
        self._prices.clear()
        self._snapshots.clear()
        self._set_status(ConnectionStatus.DISCONNECTED)
        logger.info("Price stream disconnected")

    async def update_auth_token(self) -> None:
        """Reopen an active stream under the current auth token.

        When connected, the current transport is closed deliberately and a
        new one is opened immediately, without touching the backoff state or
        the subscriber set. An open still in flight re-reads the token once
        its handshake completes and reopens if it changed. Otherwise the next
        connect() simply uses the new token.

        Raises:
            PriceFeedConfigError: The stream was open but no token is left.
            PriceFeedConnectionError: The new transport failed to open.
        """
        if self._status != ConnectionStatus.CONNECTED:
            return

        logger.info("Auth token updated, reopening price stream")
        self._generation += 1
        await self._close_transport(reason="auth token refresh")
        self._set_status(ConnectionStatus.DISCONNECTED)
        await self._open()

    def on_price_update(self, callback: Callable[[float], object]) -> Callable[[], None]:
        """Register a callback for each new price. Returns its unsubscribe function."""
        return self._prices.subscribe(callback)

    def on_snapshot(self, callback: Callable[[PriceSnapshot], object]) -> Callable[[], None]:
        """Register a callback for each new full snapshot. Returns its unsubscribe function."""
        return self._snapshots.subscribe(callback)

    def on_error(self, callback: Callable[[PriceFeedError], object]) -> Callable[[], None]:
        """Register a callback for surfaced errors. Returns its unsubscribe function."""
        return self._errors.subscribe(callback)

    def on_status_change(
        self, callback: Callable[[ConnectionStatus], object]
    ) -> Callable[[], None]:
        """Register a callback for status transitions. Returns its unsubscribe function."""
        return self._statuses.subscribe(callback)

    async def get_bitcoin_price(self, timeout: float | None = None) -> float:
        """Wait for the next price received after this call.

        Connects first if the stream is disconnected. Concurrent callers all
        resolve with the same upcoming snapshot. The timeout covers only the
        wait for a message; it does not change the connection state.

        Args:
            timeout: Seconds to wait; defaults to the client's request timeout.

        Returns:
            The price from the next inbound snapshot.

        Raises:
            PriceTimeoutError: No price arrived within the timeout.
            PriceFeedConfigError: Not connected and no auth token is available.
            PriceFeedConnectionError: Not connected and the transport failed to open.
        """
        timeout = self._price_request_timeout if timeout is None else timeout
        future: asyncio.Future[float] = asyncio.get_running_loop().create_future()

        def resolve(price: float) -> None:
            if not future.done():
                future.set_result(price)

        unsubscribe = self._prices.subscribe(resolve)
        try:
            if self._status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
                await self.connect()
            return await asyncio.wait_for(future, timeout)
        except TimeoutError:
            raise PriceTimeoutError(
                "No BTC price received before timeout",
                context={"timeout_seconds": timeout},
            ) from None
        finally:
            unsubscribe()

    def get_connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def latest_snapshot(self) -> PriceSnapshot | None:
        return self._latest

    @property
    def last_error(self) -> PriceFeedError | None:
        return self._last_error

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def retry_delay(self) -> float:
        return self._retry_delay

    # ─── Internal: Transport ───

    async def _open(self, scheduled: bool = False) -> None:
        """Open a transport under the current token and start its reader task.

        Args:
            scheduled: True for reconnects from the backoff timer, whose
                attempt was counted when it was scheduled. A failed explicit
                open (connect, token refresh) counts itself.
        """
        token = self._read_token()
        if not token:
            raise PriceFeedConfigError("No auth token available for the price stream")

        url = build_stream_url(token, api_url=self._api_url, ws_url=self._ws_url, path=self._path)
        endpoint = strip_token(url)
        generation = self._generation

        self._set_status(ConnectionStatus.CONNECTING)
        logger.info(
            "Connecting to price stream",
            extra={"data": {"endpoint": endpoint, "retry_count": self._retry_count}},
        )

        try:
            ws = await self._connect_factory(url)
        except Exception as exc:
            error = PriceFeedConnectionError(
                f"Price stream connection failed: {exc}",
                context={"endpoint": endpoint},
            )
            logger.warning(
                "Price stream connection failed",
                extra={"data": {"endpoint": endpoint, "error": str(exc)}},
            )
            if generation == self._generation:
                if not scheduled:
                    self._retry_count += 1
                self._report_error(error)
                self._handle_transport_closed()
            raise error from exc

        if generation != self._generation:
            # disconnect() ran while the handshake was in flight
            await ws.close(code=NORMAL_CLOSURE, reason="client disconnect")
            return

        current = self._read_token()
        if current and current != token:
            # Token refreshed while the handshake was in flight
            logger.info("Auth token changed during connect, reopening price stream")
            await ws.close(code=NORMAL_CLOSURE, reason="auth token refresh")
            await self._open(scheduled=scheduled)
            return

        self._ws = ws
        self._last_error = None
        self._reset_backoff()
        PRICE_WS_CONNECTED.set(1)
        self._set_status(ConnectionStatus.CONNECTED)
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        logger.info("Price stream connected", extra={"data": {"endpoint": endpoint}})

    async def _read_loop(self, ws: Any) -> None:
        """Deliver messages until the transport closes, then hand off to the retry path."""
        try:
            async for raw in ws:
                self._handle_message(raw)
        except websockets.ConnectionClosed as exc:
            if ws is self._ws:
                logger.warning(
                    "Price stream closed unexpectedly",
                    extra={"data": {"error": str(exc)}},
                )
        except Exception as exc:
            if ws is self._ws:
                logger.error(
                    "Price stream transport error",
                    extra={"data": {"error": str(exc)}},
                )

        if ws is not self._ws:
            # Closed deliberately (disconnect or token refresh)
            return

        self._ws = None
        self._reader_task = None
        PRICE_WS_CONNECTED.set(0)
        self._report_error(PriceFeedConnectionError("Price stream connection lost"))
        self._handle_transport_closed()

    async def _close_transport(self, reason: str) -> None:
        """Close the current transport deliberately and wait for its reader to stop."""
        ws, self._ws = self._ws, None
        task, self._reader_task = self._reader_task, None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if ws is None:
            return

        PRICE_WS_CONNECTED.set(0)
        try:
            await ws.close(code=NORMAL_CLOSURE, reason=reason)
        except Exception as exc:
            logger.warning(
                "Error closing price stream",
                extra={"data": {"error": str(exc)}},
            )

    # ─── Internal: Messages ───

    def _handle_message(self, raw: str | bytes) -> None:
        """Parse one inbound message and fan it out. Bad messages never close the stream."""
        try:
            snapshot = PriceSnapshot.model_validate_json(raw)
        except ValidationError as exc:
            PRICE_WS_MESSAGES_TOTAL.labels(outcome="invalid").inc()
            error = PriceMessageError(
                "Invalid price message",
                context={"error_count": exc.error_count(), "preview": str(raw)[:200]},
            )
            logger.warning(
                "Invalid price message",
                extra={"data": {"errors": exc.errors(include_url=False, include_input=False)}},
            )
            self._report_error(error)
            return

        PRICE_WS_MESSAGES_TOTAL.labels(outcome="ok").inc()
        self._latest = snapshot
        logger.debug(
            "Price received",
            extra={"data": {"price": snapshot.price, "timestamp": snapshot.timestamp}},
        )
        self._prices.emit(snapshot.price)
        self._snapshots.emit(snapshot)

    # ─── Internal: Reconnection ───

    def _handle_transport_closed(self) -> None:
        """Apply the backoff policy after a non-deliberate close or failed open.

        While retry_count is below the budget, one reconnect is scheduled
        after the current delay, retry_count is incremented, and the delay
        doubles up to the ceiling. A dropped stream therefore gets the full
        budget of reconnects.
        """
        self._set_status(ConnectionStatus.DISCONNECTED)

        if self._retry_count >= self._max_reconnect_attempts:
            error = PriceFeedConnectionError(
                f"Price stream reconnection failed after {self._retry_count} attempts",
                context={"attempts": self._retry_count},
            )
            logger.error(
                "Price stream reconnect budget exhausted",
                extra={"data": {"attempts": self._retry_count}},
            )
            self._set_status(ConnectionStatus.ERROR)
            self._report_error(error)
            return

        delay = self._retry_delay
        self._retry_count += 1
        self._retry_delay = min(self._retry_delay * 2, self._max_retry_delay)
        PRICE_WS_RECONNECTS_TOTAL.inc()
        logger.info(
            "Reconnect scheduled",
            extra={
                "data": {
                    "attempt": self._retry_count,
                    "max_attempts": self._max_reconnect_attempts,
                    "wait_seconds": delay,
                }
            },
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._open(scheduled=True)
        except PriceFeedConnectionError:
            # Already reported; _open scheduled the next attempt or went terminal
            return
        except PriceFeedConfigError as exc:
            logger.error("Reconnect aborted, no auth token available")
            self._report_error(exc)

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _reset_backoff(self) -> None:
        self._retry_count = 0
        self._retry_delay = self._initial_retry_delay

    # ─── Internal: Observers ───

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._statuses.emit(status)

    def _report_error(self, error: PriceFeedError) -> None:
        self._last_error = error
        self._errors.emit(error)

    def _read_token(self) -> str | None:
        try:
            return self._token_provider()
        except Exception as exc:
            logger.error(
                "Failed to read auth token",
                extra={"data": {"error": str(exc)}},
            )
            return None
