"""
End-to-end wiring tests for TradingClient with a fake transport and a mocked
REST backend.
"""

import asyncio
from dataclasses import replace

import httpx
import pytest

from conftest import FakeTransportFactory
from tradewire.api.client import ApiClient
from tradewire.app import TradingClient
from tradewire.auth.token_store import TokenStore
from tradewire.config.config import Settings
from tradewire.connection.lifecycle import ConnectionState


def settings(**overrides):
    cfg = Settings(
        api_base_url="http://venue.test/api",
        ws_url="http://venue.test",
        ws_transports=["websocket"],
        connect_timeout_sec=1.0,
        reconnect_interval_sec=0.01,
        max_reconnect_attempts=0,
        confirmation_window_sec=60.0,
        notification_ttl_sec=0.0,
        token_expiry_buffer_sec=300.0,
        http_timeout=1.0,
        log_level="INFO",
        log_file=None,
        username=None,
        password=None,
        markets=["WTI"],
    )
    return replace(cfg, **overrides)


def backend(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/auth/login":
        return httpx.Response(
            200,
            json={"access_token": "tok-1", "expires_in": 3600, "user": {"id": "u1", "username": "alice"}},
        )
    return httpx.Response(404, json={"detail": "not found"})


def make_client(cfg=None):
    cfg = cfg or settings()
    tokens = TokenStore()
    http = httpx.AsyncClient(base_url=cfg.api_base_url, transport=httpx.MockTransport(backend))
    api = ApiClient(cfg.api_base_url, tokens, client=http)
    factory = FakeTransportFactory()
    return TradingClient(cfg, tokens=tokens, transport_factory=factory, api=api), factory


class TestTradingClient:
    @pytest.mark.asyncio
    async def test_start_without_token_stays_offline(self):
        client, factory = make_client()
        await client.start()
        await asyncio.sleep(0.02)

        assert client.connection.state is ConnectionState.DISCONNECTED
        assert factory.created == []
        await client.close()

    @pytest.mark.asyncio
    async def test_login_connects_and_subscribes(self):
        client, factory = make_client()
        await client.start()

        await client.login("alice", "pw")
        assert await client.connection.wait_until_connected(1.0)

        assert factory.last.token == "tok-1"
        assert factory.last.frames("subscribe_market") == ["WTI"]
        await client.close()

    @pytest.mark.asyncio
    async def test_is_my_turn_uses_logged_in_party(self):
        client, factory = make_client()
        await client.start()
        await client.login("alice", "pw")
        assert await client.connection.wait_until_connected(1.0)

        await factory.last.deliver(
            "negotiation:your_turn",
            {"asset": "WTI", "turn": "bid", "bestBid": 100, "bestBidPartyId": "u1"},
        )

        assert client.is_my_turn("WTI") is True
        assert client.is_my_turn("BRENT") is False
        await client.close()

    @pytest.mark.asyncio
    async def test_logout_clears_everything(self):
        client, factory = make_client()
        await client.start()
        await client.login("alice", "pw")
        assert await client.connection.wait_until_connected(1.0)
        await factory.last.deliver(
            "quantity:confirmation_request",
            {"confirmationKey": "k1", "partyQuantity": 5, "counterpartyQuantity": 3},
        )

        await client.logout()

        assert client.connection.state is ConnectionState.DISCONNECTED
        assert client.confirmations.pending() == []
        assert client.tokens.get_valid_token() is None
        assert client.get_stats()["connection"]["session_id"] is None
        await client.close()
