"""Price stream endpoint URL construction.

The stream lives at <base>/api/ws/btc-price?token=<auth token>, where the
base is the configured WebSocket origin, or the trading bot API origin with
http upgraded to ws and https to wss.
"""

from __future__ import annotations

import httpx

DEFAULT_API_URL = "http://localhost:8080"
DEFAULT_STREAM_PATH = "/api/ws/btc-price"

_WS_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def build_stream_url(
    token: str,
    api_url: str | None = None,
    ws_url: str | None = None,
    path: str = DEFAULT_STREAM_PATH,
) -> str:
    """Build the authenticated price stream URL.

    Args:
        token: Auth token, appended URL-encoded as the ``token`` query parameter.
        api_url: Trading bot API origin (e.g. "https://api.example.com").
        ws_url: Explicit stream origin; takes precedence over api_url.
        path: Stream path appended to the origin's own path.

    Returns:
        The ws:// or wss:// URL as a string.

    Raises:
        ValueError: If the origin's scheme is not http(s) or ws(s).
    """
    base = httpx.URL(ws_url or api_url or DEFAULT_API_URL)
    scheme = _WS_SCHEMES.get(base.scheme)
    if scheme is None:
        raise ValueError(f"Unsupported scheme for price stream origin: {base.scheme!r}")

    full_path = base.path.rstrip("/") + "/" + path.lstrip("/")
    url = base.copy_with(scheme=scheme, path=full_path)
    return str(url.copy_merge_params({"token": token}))


def strip_token(url: str) -> str:
    """Return the URL without its token query parameter, safe for logs and errors."""
    return str(httpx.URL(url).copy_remove_param("token"))
