"""Trading bot REST API client.

Wraps the backend endpoints the dashboard consumes with bearer
authentication, GET retries, and error mapping. Tokens are read from and
written to a TokenStore, so the price stream and this client always see
the same session.

Request policy:
- Bearer token attached when the stored token is a well-formed JWT
- 10 second timeout
- GET retried up to 2 times on 408/413/429/5xx and network errors
- 401 clears the stored session and raises ApiAuthError

Usage:
    from btcdash.api.client import TradingBotClient
    from btcdash.auth.tokens import TokenStore

    client = TradingBotClient(TokenStore())
    await client.login(UserLogin(username="satoshi", password="..."))
    positions = await client.get_positions()
    await client.close()
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from btcdash.api.exceptions import ApiAuthError, ApiConnectionError, ApiError
from btcdash.api.models import (
    AccountBalance,
    BotStatus,
    EntryAutomation,
    EntryAutomationRequest,
    LNMarketsConfig,
    LNMarketsConfigRequest,
    LoginResponse,
    MarginProtection,
    MarginProtectionRequest,
    Position,
    PriceAlert,
    PriceAlertRequest,
    PriceLevelRequest,
    TakeProfit,
    TakeProfitRequest,
    User,
    UserLogin,
    UserRegister,
)
from btcdash.auth.tokens import TokenStore, validate_token_format
from btcdash.common.config import get_settings
from btcdash.common.logging import get_logger
from btcdash.common.metrics import API_REQUESTS_TOTAL

logger = get_logger("API")

RETRY_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504})


class TradingBotClient:
    """Async client for the trading bot backend.

    Args:
        token_store: Where the session tokens are read from and written to.
        base_url: Backend origin; defaults to settings.api_url.
        timeout: Request timeout in seconds; defaults to settings.api_timeout.
        max_retries: GET retries after the first attempt; defaults to
            settings.api_max_retries.
    """

    def __init__(
        self,
        token_store: TokenStore,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        settings = get_settings()
        self.token_store = token_store
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.max_retries = settings.api_max_retries if max_retries is None else max_retries
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.api_timeout if timeout is None else timeout,
            headers={"Content-Type": "application/json"},
        )

    # ─── Core Request Method ───

    async def _request(
        self,
        method: str,
        path: str,
        json_data: dict | None = None,
    ) -> Any:
        """Make an authenticated request to the backend.

        Args:
            method: HTTP method (GET or POST).
            path: Endpoint path starting with / (e.g., /api/trading/positions).
            json_data: Optional JSON body.

        Returns:
            Parsed JSON response, or None for an empty body.

        Raises:
            ApiAuthError: 401 response (stored session cleared).
            ApiError: Any other non-2xx response.
            ApiConnectionError: Network failure or timeout after retries.
        """
        attempts = self.max_retries + 1 if method == "GET" else 1

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                response = await self.client.request(
                    method,
                    path,
                    headers=self._auth_headers(),
                    json=json_data,
                )
            except httpx.RequestError as exc:
                API_REQUESTS_TOTAL.labels(method=method, status="error").inc()
                if is_last:
                    raise ApiConnectionError(
                        f"Network error: {exc}",
                        context={"path": path, "method": method, "attempts": attempt + 1},
                    ) from exc
                await self._backoff(attempt, path, reason=str(exc))
                continue

            API_REQUESTS_TOTAL.labels(method=method, status=str(response.status_code)).inc()
            if response.status_code in RETRY_STATUS_CODES and not is_last:
                await self._backoff(attempt, path, reason=f"HTTP {response.status_code}")
                continue
            break

        if response.status_code == 401:
            logger.warning(
                "Backend rejected session, clearing credentials",
                extra={"data": {"path": path}},
            )
            self.token_store.clear_all()
            raise ApiAuthError(
                _error_message(response, "Authentication failed"),
                context={"path": path, "status": 401},
            )

        if response.status_code >= 400:
            raise ApiError(
                _error_message(response, f"HTTP error! status: {response.status_code}"),
                context={"path": path, "status": response.status_code},
            )

        if not response.content:
            return None
        return response.json()

    def _auth_headers(self) -> dict[str, str]:
        token = self.token_store.get_auth_token()
        if token and validate_token_format(token):
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def _backoff(self, attempt: int, path: str, reason: str) -> None:
        wait = 2**attempt
        logger.warning(
            "Backend request failed, retrying",
            extra={
                "data": {
                    "path": path,
                    "reason": reason,
                    "attempt": attempt + 1,
                    "wait_seconds": wait,
                }
            },
        )
        await asyncio.sleep(wait)

    # ─── Auth ───

    async def register(self, data: UserRegister) -> User | None:
        """Create an account. Does not log in."""
        body = await self._request("POST", "/api/auth/register", json_data=data.model_dump())
        user = body.get("user", body) if isinstance(body, dict) else None
        logger.info("Account registered", extra={"data": {"username": data.username}})
        return User.model_validate(user) if user and "id" in user else None

    async def login(self, data: UserLogin) -> LoginResponse:
        """Log in and store the session tokens and user data.

        Raises:
            ApiAuthError: Bad credentials, or the backend returned no
                well-formed token.
        """
        body = await self._request("POST", "/api/auth/login", json_data=data.model_dump())
        result = LoginResponse.model_validate(body or {})

        if not validate_token_format(result.token):
            raise ApiAuthError("Invalid token format", context={"username": data.username})

        self.token_store.set_auth_token(result.token)
        if result.refresh_token:
            self.token_store.set_refresh_token(result.refresh_token)
        if result.user is not None:
            self.token_store.set_user_data(result.user.model_dump())

        logger.info("Logged in", extra={"data": {"username": data.username}})
        return result

    async def refresh_auth(self) -> bool:
        """Exchange the refresh token for a new auth token.

        Returns:
            True if new tokens were stored. On any failure the stored
            session is cleared and False is returned.
        """
        refresh_token = self.token_store.get_refresh_token()
        if not refresh_token:
            return False

        try:
            body = await self._request(
                "POST", "/auth/refresh", json_data={"refresh_token": refresh_token}
            )
        except ApiError as exc:
            logger.warning("Failed to refresh authentication", extra={"data": {"error": str(exc)}})
            body = None

        if isinstance(body, dict) and body.get("token"):
            self.token_store.set_auth_token(body["token"])
            if body.get("refresh_token"):
                self.token_store.set_refresh_token(body["refresh_token"])
            logger.info("Authentication refreshed")
            return True

        self.token_store.clear_all()
        return False

    def logout(self) -> None:
        """Forget the stored session."""
        self.token_store.clear_all()
        logger.info("Logged out")

    # ─── Exchange Configuration ───

    async def get_lnmarkets_config(self) -> LNMarketsConfig:
        body = await self._request("GET", "/api/lnmarkets/config")
        return LNMarketsConfig.model_validate(body or {})

    async def set_lnmarkets_config(self, data: LNMarketsConfigRequest) -> LNMarketsConfig:
        body = await self._request("POST", "/api/lnmarkets/config", json_data=data.model_dump())
        logger.info("Exchange config saved", extra={"data": {"is_testnet": data.is_testnet}})
        return LNMarketsConfig.model_validate(body or {})

    # ─── Trading Configuration ───

    async def get_margin_protection(self) -> MarginProtection:
        body = await self._request("GET", "/api/trading/margin-protection")
        return MarginProtection.model_validate(body or {})

    async def set_margin_protection(self, data: MarginProtectionRequest) -> MarginProtection:
        body = await self._request(
            "POST", "/api/trading/margin-protection", json_data=data.model_dump()
        )
        return MarginProtection.model_validate(body or {})

    async def get_take_profit(self) -> TakeProfit:
        return TakeProfit.model_validate(await self._request("GET", "/api/trading/take-profit") or {})

    async def set_take_profit(self, data: TakeProfitRequest) -> TakeProfit:
        body = await self._request("POST", "/api/trading/take-profit", json_data=data.model_dump())
        return TakeProfit.model_validate(body or {})

    async def get_entry_automation(self) -> EntryAutomation:
        body = await self._request("GET", "/api/trading/entry-automation")
        return EntryAutomation.model_validate(body or {})

    async def set_entry_automation(self, data: EntryAutomationRequest) -> EntryAutomation:
        body = await self._request(
            "POST", "/api/trading/entry-automation", json_data=data.model_dump()
        )
        return EntryAutomation.model_validate(body or {})

    async def get_price_alert(self) -> PriceAlert:
        return PriceAlert.model_validate(await self._request("GET", "/api/trading/price-alert") or {})

    async def set_price_alert(self, data: PriceAlertRequest) -> PriceAlert:
        body = await self._request("POST", "/api/trading/price-alert", json_data=data.model_dump())
        return PriceAlert.model_validate(body or {})

    # ─── Bot Control ───

    async def start_bot(self) -> BotStatus:
        body = await self._request("POST", "/api/trading/bot/start")
        logger.info("Bot start requested")
        return BotStatus.model_validate(body or {})

    async def stop_bot(self) -> BotStatus:
        body = await self._request("POST", "/api/trading/bot/stop")
        logger.info("Bot stop requested")
        return BotStatus.model_validate(body or {})

    async def get_bot_status(self) -> BotStatus:
        return BotStatus.model_validate(await self._request("GET", "/api/trading/bot/status") or {})

    # ─── Account & Positions ───

    async def get_account_balance(self) -> AccountBalance:
        body = await self._request("GET", "/api/trading/account/balance")
        return AccountBalance.model_validate(body or {})

    async def get_positions(self) -> list[Position]:
        """Get open positions.

        Accepts either a bare JSON list or an object wrapping it under
        "positions" or "data".
        """
        body = await self._request("GET", "/api/trading/positions")
        if isinstance(body, dict):
            body = body.get("positions", body.get("data", []))
        positions = [Position.model_validate(p) for p in body or []]
        logger.info("Positions fetched", extra={"data": {"count": len(positions)}})
        return positions

    async def get_position(self, position_id: str) -> Position:
        body = await self._request("GET", f"/api/trading/positions/{position_id}")
        return Position.model_validate(body or {})

    async def close_position(self, position_id: str) -> Position | None:
        body = await self._request("POST", f"/api/trading/positions/{position_id}/close")
        logger.info("Position close requested", extra={"data": {"position_id": position_id}})
        return Position.model_validate(body) if isinstance(body, dict) else None

    async def update_take_profit(self, position_id: str, price: float) -> Position | None:
        body = await self._request(
            "POST",
            f"/api/trading/positions/{position_id}/take-profit",
            json_data=PriceLevelRequest(price=price).model_dump(),
        )
        return Position.model_validate(body) if isinstance(body, dict) else None

    async def update_stop_loss(self, position_id: str, price: float) -> Position | None:
        body = await self._request(
            "POST",
            f"/api/trading/positions/{position_id}/stop-loss",
            json_data=PriceLevelRequest(price=price).model_dump(),
        )
        return Position.model_validate(body) if isinstance(body, dict) else None

    # ─── Lifecycle ───

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
        logger.info("TradingBotClient closed")


def _error_message(response: httpx.Response, default: str) -> str:
    """Pull the backend's "message" field out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return default
