"""FastAPI dependencies for the objects owned by the app lifespan.

The lifespan in btcdash/main.py constructs one TokenStore, one
PriceStreamClient, one TradingBotClient, one ConnectionManager and one
PriceRelay per app and stores them on app.state. Routes receive them
through these dependencies instead of importing module-level singletons.
"""

from __future__ import annotations

from fastapi import Request

from btcdash.api.client import TradingBotClient
from btcdash.pricefeed.client import PriceStreamClient
from btcdash.web.relay import PriceRelay


def get_price_client(request: Request) -> PriceStreamClient:
    return request.app.state.price_client


def get_api_client(request: Request) -> TradingBotClient:
    return request.app.state.api_client


def get_relay(request: Request) -> PriceRelay:
    return request.app.state.relay
