"""Connection lifecycle: the TCP transport, the auth handshake and the state.

The state only moves through ``next_state``, a lookup in a fixed transition
table. ``Connection`` performs the side effects (opening the socket, writing
packets, tearing down) and feeds the matching events into it.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from enum import Enum
from typing import TYPE_CHECKING

from asyncrcon.errors import (
    AuthenticationFailed,
    ConnectionRefused,
    DisconnectedBeforeResponse,
    IncompleteStream,
    MalformedPacket,
    NotConnected,
    RconError,
)
from asyncrcon.protocol import ClientPacketType, Packet, iter_packets

if TYPE_CHECKING:
    from collections.abc import Callable

    from asyncrcon.registry import PendingRequests

log = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Where a client is in its connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHORIZED = "authorized"
    REFUSED = "refused"
    UNAUTHORIZED = "unauthorized"


class Event(Enum):
    """Things that move a connection between states."""

    CONNECT = "connect"
    TRANSPORT_CONNECTED = "transport_connected"
    CONNECT_FAILED = "connect_failed"
    AUTH_ACCEPTED = "auth_accepted"
    AUTH_REJECTED = "auth_rejected"
    CLOSED = "closed"


_TRANSITIONS: dict[tuple[ConnectionState, Event], ConnectionState] = {
    (ConnectionState.DISCONNECTED, Event.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.REFUSED, Event.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.UNAUTHORIZED, Event.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, Event.TRANSPORT_CONNECTED): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, Event.CONNECT_FAILED): ConnectionState.REFUSED,
    (ConnectionState.CONNECTED, Event.AUTH_ACCEPTED): ConnectionState.AUTHORIZED,
    (ConnectionState.CONNECTED, Event.AUTH_REJECTED): ConnectionState.UNAUTHORIZED,
    (ConnectionState.CONNECTING, Event.CLOSED): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, Event.CLOSED): ConnectionState.DISCONNECTED,
    (ConnectionState.AUTHORIZED, Event.CLOSED): ConnectionState.DISCONNECTED,
}

LIVE_STATES = frozenset({ConnectionState.CONNECTED, ConnectionState.AUTHORIZED})


def _disconnected(cause: BaseException | None = None) -> DisconnectedBeforeResponse:
    error = DisconnectedBeforeResponse("Disconnected before response.")
    error.__cause__ = cause
    return error


def _copy_malformed(cause: MalformedPacket) -> MalformedPacket:
    error = type(cause)(*cause.args)
    error.__cause__ = cause
    return error


def next_state(state: ConnectionState, event: Event) -> ConnectionState:
    """Return the state reached from ``state`` on ``event``.

    Events with no entry in the table leave the state unchanged, which keeps
    REFUSED and UNAUTHORIZED in place when the socket closes afterwards.
    """
    return _TRANSITIONS.get((state, event), state)


class Connection:
    """Owns the TCP transport of one client and its connection state."""

    def __init__(self, host: str, port: int, registry: PendingRequests) -> None:
        self.host = host
        self.port = port
        self.registry = registry
        self.errors: list[Exception] = []
        self._state = ConnectionState.DISCONNECTED
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task[None] | None = None

    def __str__(self) -> str:
        return f"RCON: {self.host}:{self.port}"

    @property
    def state(self) -> ConnectionState:
        """The current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Whether a transport is open (authorized or still authorizing)."""
        return self._state in LIVE_STATES

    def _transition(self, event: Event) -> None:
        previous = self._state
        self._state = next_state(previous, event)
        if self._state is not previous:
            log.debug(
                "%s: %s -> %s (%s)",
                self,
                previous.name,
                self._state.name,
                event.value,
            )

    async def open(self, timeout: float) -> None:
        """Open the TCP connection and start reading from it.

        Raises ConnectionRefused if the server cannot be reached in time.
        """
        self._transition(Event.CONNECT)
        log.info("%s: Connecting...", self)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout
            )
        except OSError as e:
            self._transition(Event.CONNECT_FAILED)
            reason = str(e) or type(e).__name__
            msg = f"Connection to {self.host}:{self.port} refused: {reason}"
            error = ConnectionRefused(msg)
            self.errors.append(error)
            log.error("%s: %s", self, msg)
            raise error from e

        self._reader, self._writer = reader, writer
        self._transition(Event.TRANSPORT_CONNECTED)
        self._read_task = asyncio.create_task(self._read_loop(reader, writer))
        log.info("%s: Connected. Authorizing...", self)

    async def authenticate(
        self, request_id: int, password: str, timeout: float
    ) -> None:
        """Run the auth handshake on the open transport.

        Any failure, including a timeout or the server hanging up, ends the
        attempt as AuthenticationFailed and closes the transport.
        """
        packet = Packet(request_id, ClientPacketType.AUTH, password)
        try:
            await self.request(packet, timeout, auth=True)
        except AuthenticationFailed as e:
            await self._reject_auth(e)
            raise
        except RconError as e:
            error = AuthenticationFailed(f"Authorization failed: {e}")
            await self._reject_auth(error)
            raise error from e

        self._transition(Event.AUTH_ACCEPTED)
        log.info("%s: Authorized.", self)

    async def _reject_auth(self, error: AuthenticationFailed) -> None:
        self._transition(Event.AUTH_REJECTED)
        self.errors.append(error)
        log.error("%s: %s", self, error)
        await self.close()

    async def request(
        self, packet: Packet, timeout: float, *, auth: bool = False
    ) -> str:
        """Send a packet and wait for the body of its response."""
        writer = self._writer
        if writer is None or not self.connected:
            msg = "Instance was disconnected."
            raise NotConnected(msg)

        future = self.registry.register(packet.request_id, timeout, auth=auth)
        log.debug(
            "%s: -> id=%d type=%d (%d chars)",
            self,
            packet.request_id,
            packet.packet_type,
            len(packet.body),
        )
        writer.write(packet.encode())
        try:
            await writer.drain()
        except OSError as e:
            log.warning("%s: Failed to send data: %s", self, e)
            self.errors.append(e)
            error = DisconnectedBeforeResponse(f"Failed to send data: {e}")
            error.__cause__ = e
            self.registry.reject(packet.request_id, error)
        return await future

    async def close(self) -> None:
        """Close the transport, failing every pending request first."""
        writer, task = self._writer, self._read_task
        self._teardown(writer, _disconnected)

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if writer is not None:
            with contextlib.suppress(OSError):
                await writer.wait_closed()

    def _teardown(
        self,
        writer: asyncio.StreamWriter | None,
        make_error: Callable[[], RconError],
    ) -> None:
        """Reject pending requests, then drop the transport handles."""
        if writer is not self._writer:
            # A read loop from an earlier transport finishing late.
            return
        self.registry.reject_all(make_error)
        self._transition(Event.CLOSED)
        self._reader = self._writer = None
        self._read_task = None
        if writer is not None:
            writer.close()

    async def _read_loop(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Dispatch incoming packets until the stream ends."""
        make_error: Callable[[], RconError] = _disconnected
        try:
            async for packet in iter_packets(reader):
                log.debug(
                    "%s: <- id=%d type=%d (%d chars)",
                    self,
                    packet.request_id,
                    packet.packet_type,
                    len(packet.body),
                )
                self.registry.dispatch(packet)
            log.warning("%s: Disconnected.", self)
        except IncompleteStream as e:
            log.warning("%s: %s", self, e)
            self.errors.append(e)
            make_error = functools.partial(_disconnected, e)
        except MalformedPacket as e:
            # Framing is lost, nothing after this can be trusted.
            log.error("%s: %s", self, e)
            self.errors.append(e)
            make_error = functools.partial(_copy_malformed, e)
        except OSError as e:
            log.warning("%s: Connection lost: %s", self, e)
            self.errors.append(e)
            make_error = functools.partial(_disconnected, e)
        self._teardown(writer, make_error)
