"""Session endpoints.

Login stores the backend session in the TokenStore and points the live
price stream at the new token; logout clears the session and closes the
stream deliberately.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from btcdash.api.client import TradingBotClient
from btcdash.api.models import User, UserLogin
from btcdash.common.logging import get_logger
from btcdash.pricefeed.client import PriceStreamClient
from btcdash.pricefeed.exceptions import PriceFeedError
from btcdash.pricefeed.models import ConnectionStatus
from btcdash.web.deps import get_api_client, get_price_client, get_relay
from btcdash.web.relay import PriceRelay

logger = get_logger("AUTH")

router = APIRouter()


class SessionResponse(BaseModel):
    user: User | None = None
    price_stream: ConnectionStatus


@router.post("/login", response_model=SessionResponse)
async def login(
    body: UserLogin,
    api_client: TradingBotClient = Depends(get_api_client),
    price_client: PriceStreamClient = Depends(get_price_client),
) -> SessionResponse:
    """Log in against the backend and (re)open the price stream under the new token.

    A price stream failure does not fail the login; it is reported through
    the stream status instead.
    """
    result = await api_client.login(body)

    try:
        status = price_client.get_connection_status()
        if status == ConnectionStatus.CONNECTED:
            await price_client.update_auth_token()
        elif status != ConnectionStatus.CONNECTING:
            await price_client.connect()
        # A CONNECTING stream re-reads the token when its handshake completes
    except PriceFeedError as exc:
        logger.warning(
            "Price stream did not open after login",
            extra={"data": {"error": str(exc)}},
        )

    return SessionResponse(user=result.user, price_stream=price_client.get_connection_status())


@router.post("/logout", response_model=SessionResponse)
async def logout(
    api_client: TradingBotClient = Depends(get_api_client),
    price_client: PriceStreamClient = Depends(get_price_client),
    relay: PriceRelay = Depends(get_relay),
) -> SessionResponse:
    api_client.logout()
    await price_client.disconnect()
    # disconnect() drops snapshot subscribers, including the relay's
    relay.attach()
    return SessionResponse(price_stream=price_client.get_connection_status())
