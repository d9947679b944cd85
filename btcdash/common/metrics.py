"""Prometheus metrics definitions for the BTC margin dashboard.

All metric objects are centralized here as module-level singletons.
Import what you need from anywhere in the codebase:

    from btcdash.common.metrics import PRICE_WS_CONNECTED, API_REQUESTS_TOTAL

The /metrics endpoint is mounted in btcdash/main.py via
prometheus_client.make_asgi_app().
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Info

# ─── App Info ───

APP_INFO = Info("btcdash_app", "Application metadata")

# ─── Live Price Stream Metrics ───

PRICE_WS_CONNECTED = Gauge(
    "price_ws_connected",
    "BTC price stream connected (1=connected, 0=disconnected)",
)

PRICE_WS_MESSAGES_TOTAL = Counter(
    "price_ws_messages_total",
    "BTC price stream messages received",
    labelnames=["outcome"],
)

PRICE_WS_RECONNECTS_TOTAL = Counter(
    "price_ws_reconnects_total",
    "BTC price stream reconnection attempts scheduled",
)

# ─── Browser Relay Metrics ───

DASHBOARD_WS_CONNECTIONS_ACTIVE = Gauge(
    "dashboard_ws_connections_active",
    "Active browser WebSocket connections",
)

DASHBOARD_WS_MESSAGES_SENT_TOTAL = Counter(
    "dashboard_ws_messages_sent_total",
    "WebSocket messages sent to browsers",
    labelnames=["event_type"],
)

# ─── Trading Bot API Metrics ───

API_REQUESTS_TOTAL = Counter(
    "api_requests_total",
    "Requests made to the trading bot backend",
    labelnames=["method", "status"],
)


def set_app_info(version: str, environment: str) -> None:
    """Set the app_info metric values. Called once at startup."""
    APP_INFO.info({"version": version, "environment": environment})
