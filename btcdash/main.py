"""FastAPI application factory for the BTC margin dashboard.

Run with: uvicorn btcdash.main:app --reload
"""

from __future__ import annotations

import traceback
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app as make_metrics_app

from btcdash.api.client import TradingBotClient
from btcdash.api.exceptions import ApiAuthError, ApiConnectionError, ApiError
from btcdash.auth.tokens import FileTokenStore, TokenStore
from btcdash.common.config import Settings, get_settings
from btcdash.common.exceptions import DashboardError
from btcdash.common.logging import get_logger
from btcdash.common.metrics import set_app_info
from btcdash.pricefeed.client import PriceStreamClient
from btcdash.pricefeed.exceptions import (
    PriceFeedConfigError,
    PriceFeedError,
    PriceTimeoutError,
)
from btcdash.web.auth import router as auth_router
from btcdash.web.manager import ConnectionManager
from btcdash.web.price import router as price_router
from btcdash.web.relay import PriceRelay

logger = get_logger("SYSTEM")

VERSION = "0.1.0"


def build_token_store(settings: Settings) -> TokenStore:
    """Encrypted file store when a path is configured, in-memory otherwise."""
    if settings.token_store_path:
        return FileTokenStore(settings.token_store_path)
    return TokenStore()


def _build_lifespan(
    token_store: TokenStore | None,
    price_client: PriceStreamClient | None,
    api_client: TradingBotClient | None,
):
    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
        """Own the price stream for the app's lifetime: connect on startup, close on shutdown."""
        settings = get_settings()
        store = token_store or build_token_store(settings)
        stream = price_client or PriceStreamClient.from_settings(store.get_auth_token, settings)
        api = api_client or TradingBotClient(store)
        manager = ConnectionManager()
        relay = PriceRelay(stream, manager)
        relay.attach()

        application.state.token_store = store
        application.state.price_client = stream
        application.state.api_client = api
        application.state.ws_manager = manager
        application.state.relay = relay

        if store.ensure_valid_session():
            try:
                await stream.connect()
                logger.info("Price stream started")
            except PriceFeedError as exc:
                logger.warning(
                    "Price stream unavailable at startup",
                    extra={"data": {"error": str(exc)}},
                )
        else:
            logger.info("No stored session, price stream waits for login")

        yield

        await stream.disconnect()
        await relay.aclose()
        await api.close()
        logger.info("Price stream stopped")

    return lifespan


def create_app(
    token_store: TokenStore | None = None,
    price_client: PriceStreamClient | None = None,
    api_client: TradingBotClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        token_store: Session store; defaults to one built from settings.
        price_client: Price stream client; defaults to one built from settings.
        api_client: Trading bot REST client; defaults to one over token_store.
    """
    settings = get_settings()
    app = FastAPI(
        title="BTC Margin Dashboard",
        version=VERSION,
        description="Live BTC price and trading bot controls for the margin dashboard",
        lifespan=_build_lifespan(token_store, price_client, api_client),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── Exception Handlers ───

    def _error_response(status_code: int, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "message": str(exc)},
        )

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
        """Handle all dashboard-specific exceptions with structured JSON responses."""
        logger.error(
            f"{type(exc).__name__}: {exc}",
            extra={"data": {"path": request.url.path}},
        )
        return _error_response(400, exc)

    @app.exception_handler(PriceFeedConfigError)
    async def price_config_error_handler(
        request: Request, exc: PriceFeedConfigError
    ) -> JSONResponse:
        """No session token for the price stream: the dashboard must log in first."""
        logger.warning(f"PriceFeedConfigError: {exc}", extra={"data": {"path": request.url.path}})
        return _error_response(401, exc)

    @app.exception_handler(PriceTimeoutError)
    async def price_timeout_handler(request: Request, exc: PriceTimeoutError) -> JSONResponse:
        logger.warning(f"PriceTimeoutError: {exc}", extra={"data": {"path": request.url.path}})
        return _error_response(504, exc)

    @app.exception_handler(PriceFeedError)
    async def price_feed_error_handler(request: Request, exc: PriceFeedError) -> JSONResponse:
        """Handle price stream connection failures as 503."""
        logger.error(f"PriceFeedError: {exc}", extra={"data": {"path": request.url.path}})
        return _error_response(503, exc)

    @app.exception_handler(ApiAuthError)
    async def api_auth_error_handler(request: Request, exc: ApiAuthError) -> JSONResponse:
        """Handle backend authentication failures as 401."""
        logger.warning(f"ApiAuthError: {exc}", extra={"data": {"path": request.url.path}})
        return _error_response(401, exc)

    @app.exception_handler(ApiConnectionError)
    async def api_connection_error_handler(
        request: Request, exc: ApiConnectionError
    ) -> JSONResponse:
        logger.error(f"ApiConnectionError: {exc}", extra={"data": {"path": request.url.path}})
        return _error_response(502, exc)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        """Pass backend 4xx statuses through; anything else is a bad gateway."""
        status = exc.context.get("status")
        status_code = status if isinstance(status, int) and 400 <= status < 500 else 502
        logger.error(f"ApiError: {exc}", extra={"data": {"path": request.url.path}})
        return _error_response(status_code, exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: log traceback, return 500."""
        logger.error(
            f"Unhandled {type(exc).__name__}: {exc}",
            extra={
                "data": {
                    "path": request.url.path,
                    "traceback": traceback.format_exc(),
                }
            },
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "InternalServerError",
                "message": "An unexpected error occurred",
            },
        )

    # ─── Health ───

    @app.get("/health")
    async def health_check() -> dict:
        """Liveness check, confirms the process is running."""
        return {"status": "ok", "version": VERSION}

    # ─── Prometheus Metrics ───

    metrics_app = make_metrics_app()
    app.mount("/metrics", metrics_app)
    set_app_info(version=VERSION, environment=settings.environment)

    # ─── Router Mounting ───

    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(price_router, tags=["price"])

    return app


app = create_app()
