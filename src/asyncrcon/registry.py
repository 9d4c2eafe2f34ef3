"""Correlate server responses with the requests waiting for them.

Each outgoing request registers its id here and gets back a future. The future
ends exactly once: with the response body, with ``RequestTimedOut`` when its
timer fires, or with the error ``reject``/``reject_all`` supplies. Late or
duplicate responses find nothing registered under their id and are dropped.

Auth failure is not a distinct packet type: the server answers the auth packet
with ``request_id == -1`` and type ``RESPONSE_AUTH``. ``dispatch`` maps that
onto the pending auth request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from asyncrcon.errors import AuthenticationFailed, RequestTimedOut
from asyncrcon.protocol import Packet, ServerPacketType

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

AUTH_FAILED_ID = -1


@dataclass
class PendingRequest:
    """A request waiting for its response."""

    request_id: int
    future: asyncio.Future[str]
    timer: asyncio.TimerHandle
    auth: bool = False


class PendingRequests:
    """In-flight requests keyed by request id."""

    def __init__(self) -> None:
        self._pending: dict[int, PendingRequest] = {}
        self._auth_id: int | None = None

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    @property
    def auth_pending(self) -> bool:
        """Whether an auth request is waiting for its reply."""
        return self._auth_id is not None

    def register(
        self, request_id: int, timeout: float, *, auth: bool = False
    ) -> asyncio.Future[str]:
        """Track a new request and start its timeout.

        Args:
            request_id: Id carried by the outgoing packet.
            timeout: Seconds to wait before failing with ``RequestTimedOut``.
            auth: Whether this is the auth request of the connection.

        Returns:
            A future resolved with the response body.
        """
        if request_id in self._pending:
            msg = f"Request id {request_id} is already pending"
            raise ValueError(msg)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id, timeout)
        self._pending[request_id] = PendingRequest(request_id, future, timer, auth)
        if auth:
            self._auth_id = request_id
        # The caller may give up (task cancelled) before any outcome arrives.
        future.add_done_callback(lambda f: self._discard(request_id, f))
        return future

    def resolve(self, request_id: int, body: str) -> bool:
        """Complete a pending request with its response body.

        Returns False if nothing is pending under ``request_id``.
        """
        entry = self._pop(request_id)
        if entry is None:
            log.debug("Dropping response for unknown request id %d", request_id)
            return False
        if not entry.future.done():
            entry.future.set_result(body)
        return True

    def reject(self, request_id: int, error: BaseException) -> bool:
        """Fail a pending request. Returns False if it is not pending."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_exception(error)
        return True

    def reject_all(self, make_error: Callable[[], BaseException]) -> None:
        """Fail every pending request.

        ``make_error`` is called once per request, so each future gets its own
        exception.
        """
        if self._pending:
            log.debug("Rejecting %d pending request(s)", len(self._pending))
        for request_id in list(self._pending):
            self.reject(request_id, make_error())

    def dispatch(self, packet: Packet) -> bool:
        """Route an incoming packet to the request it answers."""
        auth_id = self._auth_id
        is_auth_reply = packet.packet_type == ServerPacketType.RESPONSE_AUTH
        if auth_id is not None and is_auth_reply:
            if packet.request_id == AUTH_FAILED_ID:
                error = AuthenticationFailed("Authentication failed.")
                return self.reject(auth_id, error)
        elif packet.request_id == auth_id:
            # Some servers send an empty RESPONSE_VALUE ahead of the auth reply.
            log.debug(
                "Ignoring packet type %d for auth id %d", packet.packet_type, auth_id
            )
            return False
        return self.resolve(packet.request_id, packet.body)

    def _pop(self, request_id: int) -> PendingRequest | None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return None
        entry.timer.cancel()
        if request_id == self._auth_id:
            self._auth_id = None
        return entry

    def _discard(self, request_id: int, future: asyncio.Future[str]) -> None:
        entry = self._pending.get(request_id)
        if entry is not None and entry.future is future:
            self._pop(request_id)

    def _expire(self, request_id: int, timeout: float) -> None:
        msg = f"Request {request_id} timed out after {timeout * 1000:.0f}ms"
        self.reject(request_id, RequestTimedOut(msg))
