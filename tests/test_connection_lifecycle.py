"""
Tests for ConnectionManager: state machine, auto-reconnect, handler gating
and the auth / transient failure split.
"""

import asyncio

import pytest

from conftest import build_harness
from tradewire.connection.lifecycle import VALID_TRANSITIONS, ConnectionState, Session
from tradewire.core.errors import AuthExpiredError, NotConnectedError, TransientNetworkError
from tradewire.core.event_bus import EventType


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestStateMachine:
    def test_initial_state(self, harness):
        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.session is None
        assert not harness.manager.is_connected

    def test_transition_table_has_three_states(self):
        assert set(VALID_TRANSITIONS) == set(ConnectionState)
        assert ConnectionState.CONNECTED not in VALID_TRANSITIONS[ConnectionState.DISCONNECTED]

    def test_invalid_transition_blocked(self, harness):
        assert harness.manager._transition(ConnectionState.CONNECTED, "test") is False
        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.get_stats()["invalid_transitions_blocked"] == 1

    @pytest.mark.asyncio
    async def test_history_records_every_state(self, harness):
        await harness.manager.connect()
        await harness.manager.disconnect()

        states = [(t.from_state, t.to_state) for t in harness.manager.get_history()]
        assert states == [
            (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
            (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
            (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
        ]
        for _, to_state in states:
            assert to_state in ConnectionState


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_success(self, harness):
        ok = await harness.manager.connect()

        assert ok is True
        assert harness.manager.state is ConnectionState.CONNECTED
        transport = harness.factory.last
        assert transport.token == "tok-1"
        assert [name for name, _ in transport.emitted] == ["subscribe_orders", "subscribe_trades"]
        events = await harness.events(EventType.WS_CONNECTED)
        assert len(events) == 1
        assert events[0].data["restored"] is False

    @pytest.mark.asyncio
    async def test_connect_is_noop_when_live(self, harness):
        await harness.manager.connect()
        assert await harness.manager.connect() is True
        assert len(harness.factory.created) == 1

    @pytest.mark.asyncio
    async def test_connect_without_token_forces_logout(self, harness):
        harness.tokens.clear()

        ok = await harness.manager.connect()

        assert ok is False
        assert harness.factory.created == []
        harness.on_logout.assert_called_once()
        assert len(await harness.events(EventType.AUTH_EXPIRED)) == 1

    @pytest.mark.asyncio
    async def test_auth_failure_does_not_reconnect(self, harness):
        harness.factory.fail_with = AuthExpiredError("jwt expired")

        ok = await harness.manager.connect()

        assert ok is False
        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.session is None
        assert harness.tokens.get_valid_token() is None
        assert not harness.manager.auto_reconnect_active
        harness.on_logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_transient_failure_arms_timer(self, harness):
        harness.factory.fail_with = TransientNetworkError("connection refused")

        ok = await harness.manager.connect()

        assert ok is False
        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.auto_reconnect_active
        assert harness.manager.session is not None
        assert len(await harness.events(EventType.WS_CONNECT_ERROR)) == 1

        harness.factory.fail_with = None
        assert await harness.manager.wait_until_connected(1.0)
        await settle()
        assert not harness.manager.auto_reconnect_active
        await harness.manager.disconnect()

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_is_transient(self, harness):
        harness.factory.fail_with = RuntimeError("boom")

        assert await harness.manager.connect() is False
        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.auto_reconnect_active
        harness.on_logout.assert_not_called()
        await harness.manager.disconnect()

    @pytest.mark.asyncio
    async def test_auth_connect_error_frame_forces_logout(self, harness):
        await harness.manager.connect()
        transport = harness.factory.last

        await transport.deliver("connect_error", {"message": "Authentication error: token expired"})

        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.session is None
        harness.on_logout.assert_called_once()
        assert not harness.manager.auto_reconnect_active


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_from_connected(self, harness):
        await harness.manager.connect()
        transport = harness.factory.last

        await harness.manager.disconnect()

        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.session is None
        assert transport.disconnect_calls == 1
        assert not harness.manager.auto_reconnect_active

    @pytest.mark.asyncio
    async def test_disconnect_when_already_disconnected(self, harness):
        await harness.manager.disconnect()
        assert harness.manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_stops_pending_reconnect(self, harness):
        harness.factory.fail_with = TransientNetworkError("refused")
        await harness.manager.connect()
        assert harness.manager.auto_reconnect_active

        await harness.manager.disconnect()
        await asyncio.sleep(0.05)

        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert not harness.manager.auto_reconnect_active
        assert len(harness.factory.created) == 1

    @pytest.mark.asyncio
    async def test_disconnect_clears_dedup(self, harness):
        await harness.manager.connect()
        session = harness.manager.session
        await harness.factory.last.deliver(
            "quantity:confirmation_request",
            {"confirmationKey": "k1", "partyQuantity": 5, "counterpartyQuantity": 3},
        )
        assert session.dedup.size() == 1

        await harness.manager.disconnect()

        assert session.dedup.size() == 0

    @pytest.mark.asyncio
    async def test_emit_while_disconnected_raises(self, harness):
        with pytest.raises(NotConnectedError):
            await harness.manager.emit("subscribe_orders")


class TestAutoReconnect:
    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, harness):
        assert harness.manager.start_auto_reconnect() is True
        assert harness.manager.start_auto_reconnect() is False

        assert await harness.manager.wait_until_connected(1.0)
        await settle()

        assert len(harness.factory.created) == 1
        assert not harness.manager.auto_reconnect_active
        assert harness.manager.start_auto_reconnect() is True
        await settle()
        # Already live: the immediate attempt is a no-op
        assert len(harness.factory.created) == 1
        await harness.manager.disconnect()

    @pytest.mark.asyncio
    async def test_drop_reconnects_and_restores(self, harness):
        await harness.manager.connect()
        first = harness.factory.last
        assert len(await harness.events(EventType.CONNECTION_RESTORED)) == 0

        await first.drop()
        assert harness.manager.state is ConnectionState.DISCONNECTED
        assert harness.manager.auto_reconnect_active

        assert await harness.manager.wait_until_connected(1.0)
        await settle()

        assert harness.factory.last is not first
        restored = await harness.events(EventType.CONNECTION_RESTORED)
        assert len(restored) == 1
        assert len(await harness.events(EventType.WS_DISCONNECTED)) == 1
        await harness.manager.disconnect()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        h = build_harness(max_reconnect_attempts=2)
        h.factory.fail_with = TransientNetworkError("refused")

        h.manager.start_auto_reconnect()
        await asyncio.sleep(0.1)

        assert len(h.factory.created) == 2
        assert not h.manager.auto_reconnect_active
        assert len(await h.events(EventType.RECONNECT_ATTEMPT)) == 2
        assert len(await h.events(EventType.RECONNECT_ERROR)) == 2
        assert len(await h.events(EventType.RECONNECT_FAILED)) == 1
        await h.manager.disconnect()

    @pytest.mark.asyncio
    async def test_manual_connect_cancels_timer(self, harness):
        harness.factory.fail_with = TransientNetworkError("refused")
        await harness.manager.connect()
        assert harness.manager.auto_reconnect_active

        harness.factory.fail_with = None
        assert await harness.manager.manual_connect() is True
        await settle()

        assert harness.manager.state is ConnectionState.CONNECTED
        assert not harness.manager.auto_reconnect_active
        await harness.manager.disconnect()


class TestSessionAndHandlers:
    @pytest.mark.asyncio
    async def test_handlers_attached_once_per_transport(self, harness):
        await harness.manager.connect()
        first = harness.factory.last
        await first.drop()
        assert await harness.manager.wait_until_connected(1.0)
        second = harness.factory.last

        for transport in (first, second):
            assert transport.on_calls.count("connect") == 1
            assert transport.on_calls.count("match:approval") == 1
        assert harness.manager.session.transports_created == 2
        assert harness.manager.session.handlers_attached
        await harness.manager.disconnect()

    @pytest.mark.asyncio
    async def test_session_survives_reconnect(self, harness):
        await harness.manager.connect()
        session = harness.manager.session
        await harness.factory.last.drop()
        assert await harness.manager.wait_until_connected(1.0)

        assert harness.manager.session is session
        await harness.manager.disconnect()

    @pytest.mark.asyncio
    async def test_stale_transport_signals_ignored(self, harness):
        await harness.manager.connect()
        first = harness.factory.last
        await first.drop()
        assert await harness.manager.wait_until_connected(1.0)

        await first.handlers["disconnect"]("late close")

        assert harness.manager.state is ConnectionState.CONNECTED
        await harness.manager.disconnect()

    def test_session_bind_resets_flag(self):
        session = Session()
        session.handlers_attached = True
        session.bind(object())
        assert session.handlers_attached is False
        assert session.transports_created == 1

    @pytest.mark.asyncio
    async def test_markets_resubscribed_on_reconnect(self, harness):
        await harness.manager.connect()
        await harness.manager.subscribe_market("WTI")
        first = harness.factory.last
        assert first.frames("subscribe_market") == ["WTI"]

        await first.drop()
        assert await harness.manager.wait_until_connected(1.0)

        assert harness.factory.last.frames("subscribe_market") == ["WTI"]
        await harness.manager.unsubscribe_market("WTI")
        assert harness.factory.last.frames("unsubscribe_market") == ["WTI"]
        await harness.manager.disconnect()


class TestPendingAcrossDrop:
    @pytest.mark.asyncio
    async def test_pending_top_up_survives_drop(self, harness):
        await harness.manager.connect()
        first = harness.factory.last
        await first.deliver(
            "quantity:confirmation_request",
            {"confirmationKey": "k1", "asset": "WTI", "partyQuantity": 5, "counterpartyQuantity": 3},
        )
        await first.drop()

        with pytest.raises(NotConnectedError):
            await harness.confirmations.respond_quantity_top_up("k1", accepted=True)
        assert first.frames("quantity:confirmation_response") == []
        assert len(harness.confirmations.pending()) == 1

        assert await harness.manager.wait_until_connected(1.0)
        assert await harness.confirmations.respond_quantity_top_up("k1", accepted=True) is True
        assert harness.factory.last.frames("quantity:confirmation_response") == [
            {"confirmationKey": "k1", "accepted": True, "newQuantity": 8.0}
        ]
        await harness.manager.disconnect()
