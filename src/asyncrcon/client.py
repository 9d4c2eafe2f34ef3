"""High-level RCON client with connection management."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING, TypeVar

from asyncrcon.connection import Connection, ConnectionState
from asyncrcon.errors import NotConnected
from asyncrcon.protocol import ClientPacketType, Packet
from asyncrcon.registry import PendingRequests

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from asyncrcon.config import RconConfig

log = logging.getLogger(__name__)

T = TypeVar("T")

# Some servers use small ids internally; start well above them.
REQUEST_ID_BASE = 0xF4240


class RconClient:
    """Asynchronous client for a Source RCON server.

    Commands may be sent concurrently; they share one TCP connection and are
    matched to their responses by request id.

    Example:
        client = RconClient(RconConfig(host="127.0.0.1", password="secret"))
        await client.connect()
        print(await client.send("list"))
        await client.disconnect()
    """

    def __init__(self, config: RconConfig) -> None:
        self.config = config
        self._registry = PendingRequests()
        self._connection = Connection(config.host, config.port, self._registry)
        self._request_ids = itertools.count(REQUEST_ID_BASE + 1)
        self._connector: asyncio.Task[RconClient] | None = None
        self._closing: asyncio.Task[None] | None = None
        self._sessions = 0

    def __str__(self) -> str:
        return str(self._connection)

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def password(self) -> str:
        return self.config.password

    @property
    def timeout(self) -> int:
        """Per-request timeout in milliseconds."""
        return self.config.timeout

    @property
    def state(self) -> ConnectionState:
        """The current connection state."""
        return self._connection.state

    @property
    def connected(self) -> bool:
        """Whether the client has a live connection (authorized or authorizing)."""
        return self._connection.connected

    @property
    def errors(self) -> list[Exception]:
        """Connection-level errors seen so far, oldest first."""
        return list(self._connection.errors)

    async def connect(self) -> RconClient:
        """Connect and authenticate, or join the attempt already in flight.

        Raises:
            ConnectionRefused: If the TCP connection cannot be established.
            AuthenticationFailed: If the server rejects the password.
        """
        closing = self._closing
        if closing is not None and not closing.done():
            # A new transport must not open before the old one is torn down.
            await asyncio.shield(closing)
        connector = self._connector
        if connector is None or (connector.done() and not self.connected):
            connector = self._connector = asyncio.ensure_future(self._connect())
        return await self._join(connector)

    async def _connect(self) -> RconClient:
        try:
            await self._connection.open(self.config.timeout_seconds)
            await self._connection.authenticate(
                next(self._request_ids),
                self.password,
                self.config.timeout_seconds,
            )
        except BaseException:
            if self._connector is asyncio.current_task():
                self._connector = None
            raise
        return self

    async def _join(self, connector: asyncio.Task[RconClient]) -> RconClient:
        """Wait for a connect attempt without letting this caller cancel it."""
        try:
            return await asyncio.shield(connector)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if not connector.cancelled() or (task is not None and task.cancelling()):
                raise
            msg = "Connection attempt aborted by disconnect"
            raise NotConnected(msg) from None

    async def send(self, command: str) -> str:
        """Send a command and return the response text.

        One trailing newline is stripped from the response.

        Raises:
            NotConnected: If no connect attempt succeeded or is in progress.
            RequestTimedOut: If the server does not answer in time.
            DisconnectedBeforeResponse: If the connection closes first.
            EmptyResponsePacket: If the server answers with an empty packet.
        """
        connector = self._connector
        if connector is None or not self.connected:
            msg = "Instance is not connected."
            raise NotConnected(msg)
        await self._join(connector)

        packet = Packet(next(self._request_ids), ClientPacketType.COMMAND, command)
        body = await self._connection.request(packet, self.config.timeout_seconds)
        if body.endswith("\n"):
            body = body[:-1]
        return body

    async def disconnect(self) -> None:
        """Close the connection, failing any requests still waiting.

        ``connect()`` calls made before this returns wait for the teardown to
        finish, then open a new connection.
        """
        connector, self._connector = self._connector, None
        closing = self._closing = asyncio.ensure_future(
            self._close(connector, self._closing)
        )
        await asyncio.shield(closing)

    async def _close(
        self,
        connector: asyncio.Task[RconClient] | None,
        previous: asyncio.Task[None] | None,
    ) -> None:
        if previous is not None:
            await previous
        if connector is not None and not connector.done():
            connector.cancel()
            await asyncio.wait([connector])
        await self._connection.close()

    async def session(self, work: Callable[[RconClient, int], Awaitable[T]]) -> T:
        """Run ``work`` with a connected client.

        ``work`` receives the client and a session id: the number of sessions
        open when it started, this one included. Sessions are reference
        counted: concurrent or nested sessions share one connection, and the
        last one to finish disconnects.
        """
        session_id = await self._acquire()
        try:
            return await work(self, session_id)
        finally:
            await self._release()

    async def _acquire(self) -> int:
        self._sessions += 1
        session_id = self._sessions
        try:
            await self.connect()
        except BaseException:
            self._sessions -= 1
            raise
        return session_id

    async def _release(self) -> None:
        self._sessions -= 1
        if not self._sessions:
            await self.disconnect()

    async def __aenter__(self) -> RconClient:
        await self._acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._release()
