"""Relay of live price events from the price stream to browser WebSockets.

Subscribes to a PriceStreamClient and broadcasts each snapshot and status
transition through the ConnectionManager as a JSON event.

Architecture:
    PriceStreamClient.on_snapshot() -> PriceRelay -> ConnectionManager.broadcast()
    -> connected browsers

Event shape:
    {"type": "btc.price", "timestamp": "...", "data": {"price": ..., "sources": {...}}}
    {"type": "btc.status", "timestamp": "...", "data": {"status": "connected"}}
    {"type": "btc.error", "timestamp": "...", "data": {"error": "...", "message": "..."}}
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from btcdash.pricefeed.client import PriceStreamClient
from btcdash.pricefeed.exceptions import PriceFeedError
from btcdash.pricefeed.models import ConnectionStatus, PriceSnapshot
from btcdash.web.manager import ConnectionManager

PRICE_EVENT = "btc.price"
STATUS_EVENT = "btc.status"
ERROR_EVENT = "btc.error"


class RelayEvent(BaseModel):
    """A real-time event pushed to connected browsers.

    Attributes:
        type: Event type identifier ("btc.price", "btc.status" or "btc.error").
        timestamp: UTC timestamp of when the event was created.
        data: Event-specific payload dict.
    """

    type: str
    timestamp: datetime
    data: dict[str, Any]


def make_event(event_type: str, data: dict[str, Any]) -> str:
    """Serialize a relay event stamped with the current UTC time."""
    event = RelayEvent(type=event_type, timestamp=datetime.now(UTC), data=data)
    return event.model_dump_json()


class PriceRelay:
    """Forwards price stream events to a ConnectionManager.

    Stream callbacks are synchronous, so each broadcast runs as its own task;
    pending tasks are kept referenced until they finish.
    """

    def __init__(self, price_client: PriceStreamClient, manager: ConnectionManager) -> None:
        self._price_client = price_client
        self._manager = manager
        self._unsubscribers: list[Callable[[], None]] = []
        self._pending: set[asyncio.Task] = set()

    def attach(self) -> None:
        """Subscribe to the price stream. Re-attaching replaces old subscriptions."""
        self.detach()
        self._unsubscribers = [
            self._price_client.on_snapshot(self._on_snapshot),
            self._price_client.on_status_change(self._on_status),
            self._price_client.on_error(self._on_error),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def aclose(self) -> None:
        """Detach and wait for in-flight broadcasts."""
        self.detach()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _on_snapshot(self, snapshot: PriceSnapshot) -> None:
        self._send(make_event(PRICE_EVENT, snapshot.model_dump()))

    def _on_status(self, status: ConnectionStatus) -> None:
        self._send(make_event(STATUS_EVENT, {"status": status.value}))

    def _on_error(self, error: PriceFeedError) -> None:
        # Shown as a transient notification by the dashboard
        self._send(make_event(ERROR_EVENT, {"error": type(error).__name__, "message": str(error)}))

    def _send(self, message: str) -> None:
        if self._manager.active_count == 0:
            return
        task = asyncio.create_task(self._manager.broadcast(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
