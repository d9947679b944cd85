"""Browser WebSocket connection manager for the live price relay.

Maintains a set of active browser WebSocket connections and provides a
broadcast method that sends a message to all of them. Dead connections are
automatically cleaned up on send failure.

One manager is created per app in the lifespan and stored on app.state.

Usage:
    manager = ConnectionManager()
    await manager.connect(websocket)
    await manager.broadcast('{"type": "btc.price", ...}')
    manager.disconnect(websocket)
"""

from __future__ import annotations

import json

from fastapi import WebSocket

from btcdash.common.logging import get_logger
from btcdash.common.metrics import (
    DASHBOARD_WS_CONNECTIONS_ACTIVE,
    DASHBOARD_WS_MESSAGES_SENT_TOTAL,
)

logger = get_logger("WEB")


class ConnectionManager:
    """Manages active browser WebSocket connections and message broadcasting.

    Safe for a single asyncio event loop (FastAPI's default).
    Supports multiple connections from the same browser (e.g., multiple tabs).
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a WebSocket connection and track it."""
        await websocket.accept()
        self._connections.add(websocket)
        DASHBOARD_WS_CONNECTIONS_ACTIVE.inc()
        logger.info(
            "Browser connected",
            extra={"data": {"active_connections": len(self._connections)}},
        )

    def disconnect(self, websocket: WebSocket) -> None:
        """Stop tracking a WebSocket connection. Unknown sockets are ignored."""
        if websocket not in self._connections:
            return
        self._connections.discard(websocket)
        DASHBOARD_WS_CONNECTIONS_ACTIVE.dec()
        logger.info(
            "Browser disconnected",
            extra={"data": {"active_connections": len(self._connections)}},
        )

    async def broadcast(self, message: str) -> None:
        """Send a message to all connected browsers.

        Catches send failures and removes dead connections.

        Args:
            message: JSON string to broadcast.
        """
        event_type = "unknown"
        try:
            parsed = json.loads(message)
            event_type = parsed.get("type", "unknown")
        except (json.JSONDecodeError, AttributeError):
            pass

        dead: list[WebSocket] = []
        for ws in self._connections.copy():
            try:
                await ws.send_text(message)
                DASHBOARD_WS_MESSAGES_SENT_TOTAL.labels(event_type=event_type).inc()
            except Exception:
                dead.append(ws)

        for ws in dead:
            self.disconnect(ws)

    @property
    def active_count(self) -> int:
        """Return the number of active connections."""
        return len(self._connections)
