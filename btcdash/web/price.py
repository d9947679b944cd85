"""Live BTC price endpoints.

- GET /api/btc-price: latest snapshot, or the next one when none is fresh
- GET /api/btc-price/status: stream connection state for the price card
- WS  /ws/btc-price: pushes every snapshot and status change to the browser

Price stream errors are mapped to HTTP responses by the exception handlers
registered in btcdash/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from btcdash.common.logging import get_logger
from btcdash.pricefeed.client import PriceStreamClient
from btcdash.pricefeed.models import ConnectionStatus, PriceSnapshot
from btcdash.web.deps import get_price_client
from btcdash.web.relay import PRICE_EVENT, STATUS_EVENT, make_event

logger = get_logger("WEB")

router = APIRouter()


class StreamStatusResponse(BaseModel):
    """Connection state of the live price stream."""

    status: ConnectionStatus
    retry_count: int
    retry_delay: float
    last_error: str | None = None
    latest: PriceSnapshot | None = None


@router.get("/api/btc-price", response_model=PriceSnapshot)
async def get_btc_price(
    price_client: PriceStreamClient = Depends(get_price_client),
) -> PriceSnapshot:
    """Return the latest BTC snapshot.

    While the stream is connected the cached snapshot is returned directly.
    Otherwise this connects if needed and waits for the next snapshot.
    """
    snapshot = price_client.latest_snapshot
    if snapshot is not None and price_client.get_connection_status() == ConnectionStatus.CONNECTED:
        return snapshot

    await price_client.get_bitcoin_price()
    return price_client.latest_snapshot


@router.get("/api/btc-price/status", response_model=StreamStatusResponse)
async def get_btc_price_status(
    price_client: PriceStreamClient = Depends(get_price_client),
) -> StreamStatusResponse:
    error = price_client.last_error
    return StreamStatusResponse(
        status=price_client.get_connection_status(),
        retry_count=price_client.retry_count,
        retry_delay=price_client.retry_delay,
        last_error=str(error) if error is not None else None,
        latest=price_client.latest_snapshot,
    )


@router.websocket("/ws/btc-price")
async def btc_price_socket(websocket: WebSocket) -> None:
    """Stream live price events to a browser.

    Sends the current status and latest snapshot on connect, then keeps the
    socket open; further events are delivered by the PriceRelay broadcast.
    """
    manager = websocket.app.state.ws_manager
    price_client: PriceStreamClient = websocket.app.state.price_client

    await manager.connect(websocket)
    try:
        status = price_client.get_connection_status()
        await websocket.send_text(make_event(STATUS_EVENT, {"status": status.value}))
        snapshot = price_client.latest_snapshot
        if snapshot is not None:
            await websocket.send_text(make_event(PRICE_EVENT, snapshot.model_dump()))

        while True:
            # Keepalive pings from the browser
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Browser closed price socket")
    finally:
        manager.disconnect(websocket)
