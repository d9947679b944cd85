"""Tests for the dashboard FastAPI app: lifespan, price, session and WS routes.

The price client and REST client are replaced by MagicMocks bound to their classes for route
tests; the lifespan tests use a real PriceStreamClient over FakeTransport.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from btcdash.api.client import TradingBotClient
from btcdash.api.exceptions import ApiAuthError
from btcdash.api.models import LoginResponse, User
from btcdash.auth.tokens import TokenStore
from btcdash.main import create_app
from btcdash.pricefeed.client import PriceStreamClient
from btcdash.pricefeed.exceptions import (
    PriceFeedConfigError,
    PriceFeedConnectionError,
    PriceTimeoutError,
)
from btcdash.pricefeed.models import ConnectionStatus, PriceSnapshot
from tests.conftest import TEST_JWT

SNAPSHOT = PriceSnapshot(price=65000.12, timestamp=1700000000000, sources={"coinbase": 65001.0})


# ─── Fixtures ───


@pytest.fixture
def price_client() -> MagicMock:
    """Mock PriceStreamClient, connected with a cached snapshot."""
    mock = MagicMock(spec=PriceStreamClient)
    mock.get_connection_status.return_value = ConnectionStatus.CONNECTED
    mock.latest_snapshot = SNAPSHOT
    mock.last_error = None
    mock.retry_count = 0
    mock.retry_delay = 1.0
    return mock


@pytest.fixture
def api_client() -> MagicMock:
    return MagicMock(spec=TradingBotClient)


@pytest.fixture
def client(token_store, price_client, api_client):
    """TestClient running the full lifespan around mocked collaborators."""
    app = create_app(token_store=token_store, price_client=price_client, api_client=api_client)
    with TestClient(app) as test_client:
        yield test_client


# ─── Health & Metrics ───


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_metrics_exposed(self, client):
        response = client.get("/metrics/")
        assert response.status_code == 200
        assert "price_ws_connected" in response.text


# ─── Lifespan ───


class TestLifespan:
    """Tests for startup connect and shutdown disconnect."""

    def test_startup_connects_with_stored_session(self, token_store, transport):
        stream = PriceStreamClient(
            token_store.get_auth_token, api_url="http://bot.test", connect_factory=transport
        )
        app = create_app(token_store=token_store, price_client=stream)

        with TestClient(app):
            assert stream.get_connection_status() == ConnectionStatus.CONNECTED
            assert transport.urls == [f"ws://bot.test/api/ws/btc-price?token={TEST_JWT}"]

        assert stream.get_connection_status() == ConnectionStatus.DISCONNECTED
        assert transport.latest.close_code == 1000

    def test_startup_without_session_waits(self, transport):
        stream = PriceStreamClient(lambda: None, connect_factory=transport)
        app = create_app(token_store=TokenStore(), price_client=stream)

        with TestClient(app):
            assert transport.urls == []
            assert stream.get_connection_status() == ConnectionStatus.DISCONNECTED

    def test_startup_survives_unreachable_stream(self, token_store, transport):
        """A stream that cannot open is logged; the app still starts."""
        transport.fail_always = True
        stream = PriceStreamClient(
            token_store.get_auth_token, api_url="http://bot.test", connect_factory=transport
        )
        app = create_app(token_store=token_store, price_client=stream)

        with TestClient(app) as test_client:
            assert test_client.get("/health").status_code == 200

    def test_shutdown_closes_clients(self, token_store, price_client, api_client):
        app = create_app(token_store=token_store, price_client=price_client, api_client=api_client)
        with TestClient(app):
            price_client.connect.assert_awaited_once()

        price_client.disconnect.assert_awaited_once()
        api_client.close.assert_awaited_once()


# ─── Price Routes ───


class TestPriceRoutes:
    """Tests for /api/btc-price and /api/btc-price/status."""

    def test_cached_snapshot_when_connected(self, client, price_client):
        response = client.get("/api/btc-price")

        assert response.status_code == 200
        assert response.json() == {
            "price": 65000.12,
            "timestamp": 1700000000000,
            "sources": {"coinbase": 65001.0},
        }
        price_client.get_bitcoin_price.assert_not_awaited()

    def test_waits_for_next_price_when_not_connected(self, client, price_client):
        price_client.get_connection_status.return_value = ConnectionStatus.DISCONNECTED
        price_client.get_bitcoin_price.return_value = 65000.12

        response = client.get("/api/btc-price")

        assert response.status_code == 200
        price_client.get_bitcoin_price.assert_awaited_once()

    def test_timeout_is_504(self, client, price_client):
        price_client.latest_snapshot = None
        price_client.get_bitcoin_price.side_effect = PriceTimeoutError(
            "No BTC price received before timeout", context={"timeout_seconds": 10.0}
        )

        response = client.get("/api/btc-price")

        assert response.status_code == 504
        assert response.json()["error"] == "PriceTimeoutError"

    def test_missing_token_is_401(self, client, price_client):
        price_client.latest_snapshot = None
        price_client.get_bitcoin_price.side_effect = PriceFeedConfigError("No auth token")

        assert client.get("/api/btc-price").status_code == 401

    def test_connection_failure_is_503(self, client, price_client):
        price_client.latest_snapshot = None
        price_client.get_bitcoin_price.side_effect = PriceFeedConnectionError("refused")

        assert client.get("/api/btc-price").status_code == 503

    def test_status(self, client, price_client):
        price_client.get_connection_status.return_value = ConnectionStatus.DISCONNECTED
        price_client.retry_count = 2
        price_client.retry_delay = 4.0
        price_client.last_error = PriceFeedConnectionError("Price stream connection lost")

        body = client.get("/api/btc-price/status").json()

        assert body["status"] == "disconnected"
        assert body["retry_count"] == 2
        assert body["retry_delay"] == 4.0
        assert body["last_error"] == "Price stream connection lost"
        assert body["latest"]["price"] == 65000.12


# ─── Session Routes ───


class TestSessionRoutes:
    """Tests for /api/auth/login and /api/auth/logout."""

    def _login_result(self) -> LoginResponse:
        return LoginResponse(
            token=TEST_JWT,
            user=User(id=1, username="satoshi", email="satoshi@example.com"),
        )

    def test_login_refreshes_connected_stream(self, client, price_client, api_client):
        api_client.login.return_value = self._login_result()

        response = client.post("/api/auth/login", json={"username": "satoshi", "password": "pw"})

        assert response.status_code == 200
        assert response.json()["user"]["username"] == "satoshi"
        assert response.json()["price_stream"] == "connected"
        price_client.update_auth_token.assert_awaited_once()

    def test_login_connects_idle_stream(self, client, price_client, api_client):
        api_client.login.return_value = self._login_result()
        price_client.get_connection_status.return_value = ConnectionStatus.ERROR
        price_client.connect.reset_mock()

        client.post("/api/auth/login", json={"username": "satoshi", "password": "pw"})

        price_client.connect.assert_awaited_once()
        price_client.update_auth_token.assert_not_awaited()

    def test_login_leaves_connecting_stream_alone(self, client, price_client, api_client):
        """A stream mid-handshake picks up the new token itself; no second open is started."""
        api_client.login.return_value = self._login_result()
        price_client.get_connection_status.return_value = ConnectionStatus.CONNECTING
        price_client.connect.reset_mock()

        response = client.post("/api/auth/login", json={"username": "satoshi", "password": "pw"})

        assert response.status_code == 200
        assert response.json()["price_stream"] == "connecting"
        price_client.connect.assert_not_awaited()
        price_client.update_auth_token.assert_not_awaited()

    def test_login_succeeds_when_stream_fails(self, client, price_client, api_client):
        """A stream failure after login is reported through price_stream, not an error."""
        api_client.login.return_value = self._login_result()
        price_client.get_connection_status.return_value = ConnectionStatus.DISCONNECTED
        price_client.connect.side_effect = PriceFeedConnectionError("refused")

        response = client.post("/api/auth/login", json={"username": "satoshi", "password": "pw"})

        assert response.status_code == 200
        assert response.json()["price_stream"] == "disconnected"

    def test_bad_credentials_is_401(self, client, api_client):
        api_client.login.side_effect = ApiAuthError("Invalid credentials")

        response = client.post("/api/auth/login", json={"username": "satoshi", "password": "x"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    def test_logout_disconnects_stream(self, client, price_client, api_client):
        price_client.get_connection_status.return_value = ConnectionStatus.DISCONNECTED

        response = client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"user": None, "price_stream": "disconnected"}
        api_client.logout.assert_called_once()
        price_client.disconnect.assert_awaited_once()


# ─── Browser WebSocket ───


class TestPriceSocket:
    """Tests for WS /ws/btc-price."""

    def test_sends_status_then_latest_price(self, client):
        with client.websocket_connect("/ws/btc-price") as ws:
            status = ws.receive_json()
            price = ws.receive_json()

        assert status["type"] == "btc.status"
        assert status["data"] == {"status": "connected"}
        assert price["type"] == "btc.price"
        assert price["data"]["price"] == 65000.12

    def test_no_price_event_without_snapshot(self, client, price_client):
        price_client.latest_snapshot = None
        price_client.get_connection_status.return_value = ConnectionStatus.CONNECTING

        with client.websocket_connect("/ws/btc-price") as ws:
            status = ws.receive_json()
            assert client.app.state.ws_manager.active_count == 1

        assert status["data"] == {"status": "connecting"}

    def test_live_snapshot_relayed(self, token_store, transport):
        """A snapshot from the upstream stream reaches a connected browser."""
        stream = PriceStreamClient(
            token_store.get_auth_token, api_url="http://bot.test", connect_factory=transport
        )
        app = create_app(token_store=token_store, price_client=stream)

        with TestClient(app) as test_client:
            with test_client.websocket_connect("/ws/btc-price") as ws:
                assert ws.receive_json()["type"] == "btc.status"
                test_client.portal.call(
                    transport.latest.push,
                    '{"price": 66000.5, "timestamp": 1700000001000, "sources": {}}',
                )
                event = ws.receive_json()

        assert event["type"] == "btc.price"
        assert event["data"]["price"] == 66000.5
