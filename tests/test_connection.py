"""Tests for the connection state machine."""

import asyncio
from unittest.mock import patch

import pytest
from fake_server import FakeRconServer

from asyncrcon.connection import Connection, ConnectionState, Event, next_state
from asyncrcon.errors import (
    AuthenticationFailed,
    ConnectionRefused,
    DisconnectedBeforeResponse,
    NotConnected,
)
from asyncrcon.protocol import ClientPacketType, Packet
from asyncrcon.registry import PendingRequests


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class TestNextState:
    @pytest.mark.parametrize(
        ("state", "event", "expected"),
        [
            (ConnectionState.DISCONNECTED, Event.CONNECT, ConnectionState.CONNECTING),
            (ConnectionState.REFUSED, Event.CONNECT, ConnectionState.CONNECTING),
            (ConnectionState.UNAUTHORIZED, Event.CONNECT, ConnectionState.CONNECTING),
            (
                ConnectionState.CONNECTING,
                Event.TRANSPORT_CONNECTED,
                ConnectionState.CONNECTED,
            ),
            (ConnectionState.CONNECTING, Event.CONNECT_FAILED, ConnectionState.REFUSED),
            (
                ConnectionState.CONNECTED,
                Event.AUTH_ACCEPTED,
                ConnectionState.AUTHORIZED,
            ),
            (
                ConnectionState.CONNECTED,
                Event.AUTH_REJECTED,
                ConnectionState.UNAUTHORIZED,
            ),
            (ConnectionState.CONNECTED, Event.CLOSED, ConnectionState.DISCONNECTED),
            (ConnectionState.AUTHORIZED, Event.CLOSED, ConnectionState.DISCONNECTED),
            (ConnectionState.CONNECTING, Event.CLOSED, ConnectionState.DISCONNECTED),
        ],
    )
    def test_transitions(self, state, event, expected):
        assert next_state(state, event) is expected

    @pytest.mark.parametrize(
        "state", [ConnectionState.REFUSED, ConnectionState.UNAUTHORIZED]
    )
    def test_failure_states_survive_close(self, state):
        assert next_state(state, Event.CLOSED) is state

    def test_unlisted_event_keeps_state(self):
        assert (
            next_state(ConnectionState.AUTHORIZED, Event.CONNECT)
            is ConnectionState.AUTHORIZED
        )
        assert (
            next_state(ConnectionState.DISCONNECTED, Event.AUTH_ACCEPTED)
            is ConnectionState.DISCONNECTED
        )


class TestOpen:
    def test_refused(self):
        async def _test():
            conn = Connection("localhost", 25575, PendingRequests())
            with patch(
                "asyncrcon.connection.asyncio.open_connection",
                side_effect=ConnectionRefusedError("Connection refused"),
            ):
                refused = pytest.raises(ConnectionRefused, match="Connection refused")
                with refused as info:
                    await conn.open(timeout=1)

            assert isinstance(info.value.__cause__, ConnectionRefusedError)
            assert conn.state is ConnectionState.REFUSED
            assert conn.errors == [info.value]

        _run(_test())

    def test_connect_timeout(self):
        async def _test():
            async def never_connects(*args):
                await asyncio.sleep(10)

            conn = Connection("localhost", 25575, PendingRequests())
            with patch(
                "asyncrcon.connection.asyncio.open_connection", never_connects
            ):
                with pytest.raises(ConnectionRefused, match="TimeoutError"):
                    await conn.open(timeout=0.01)

            assert conn.state is ConnectionState.REFUSED

        _run(_test())

    def test_open_and_close(self):
        async def _test():
            async with FakeRconServer(lambda c: c.wait_closed()) as server:
                conn = Connection("127.0.0.1", server.port, PendingRequests())
                await conn.open(timeout=1)
                assert conn.state is ConnectionState.CONNECTED
                assert conn.connected

                await conn.close()
                assert conn.state is ConnectionState.DISCONNECTED
                assert not conn.connected

        _run(_test())


class TestAuthenticate:
    def test_auth_timeout_becomes_auth_failure(self):
        async def _test():
            async def silent(conn):
                await conn.receive()
                await conn.wait_closed()

            async with FakeRconServer(silent) as server:
                conn = Connection("127.0.0.1", server.port, PendingRequests())
                await conn.open(timeout=1)

                with pytest.raises(AuthenticationFailed, match="timed out") as info:
                    await conn.authenticate(1000001, "abc", timeout=0.05)

            assert conn.state is ConnectionState.UNAUTHORIZED
            assert conn.errors == [info.value]

        _run(_test())

    def test_server_hangs_up_during_auth(self):
        async def _test():
            async def hang_up(conn):
                await conn.receive()

            async with FakeRconServer(hang_up) as server:
                conn = Connection("127.0.0.1", server.port, PendingRequests())
                await conn.open(timeout=1)

                with pytest.raises(AuthenticationFailed) as info:
                    await conn.authenticate(1000001, "abc", timeout=1)

            assert isinstance(info.value.__cause__, DisconnectedBeforeResponse)
            assert conn.state is ConnectionState.DISCONNECTED

        _run(_test())


class TestRequest:
    def test_request_before_open(self):
        async def _test():
            conn = Connection("localhost", 25575, PendingRequests())
            packet = Packet(1, ClientPacketType.COMMAND, "list")

            with pytest.raises(NotConnected):
                await conn.request(packet, timeout=1)

        _run(_test())

    def test_stale_read_loop_does_not_close_new_transport(self):
        async def _test():
            async with FakeRconServer(lambda c: c.wait_closed()) as server:
                registry = PendingRequests()
                conn = Connection("127.0.0.1", server.port, registry)
                await conn.open(timeout=1)
                old_writer = conn._writer
                await conn.close()

                await conn.open(timeout=1)
                conn._teardown(old_writer, lambda: DisconnectedBeforeResponse("stale"))

                assert conn.state is ConnectionState.CONNECTED
                await conn.close()

        _run(_test())
