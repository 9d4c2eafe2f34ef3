"""Source RCON wire protocol encoding, decoding and stream reassembly."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

from asyncrcon.errors import EmptyResponsePacket, IncompleteStream, MalformedPacket

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncIterator


class ClientPacketType(IntEnum):
    """Packet types sent by the client."""

    COMMAND = 2
    AUTH = 3


class ServerPacketType(IntEnum):
    """Packet types sent by the server."""

    RESPONSE_VALUE = 0
    RESPONSE_AUTH = 2


# The length prefix itself, then request_id + type + 2 nulls
LENGTH_SIZE = 4
MIN_PACKET_SIZE = 10
# Servers truncate bodies beyond this; the codec does not enforce it.
MAX_BODY_SIZE = 4096
READ_CHUNK_SIZE = 4096

_LENGTH = struct.Struct("<i")
_HEADER = struct.Struct("<ii")


@dataclass(frozen=True)
class Packet:
    """A single RCON packet.

    Wire format: [length:i32][request_id:i32][type:i32][body\\0\\0]
    Length covers everything after itself (request_id + type + body + 2 nulls).
    Unknown packet types are kept as plain ints.
    """

    request_id: int
    packet_type: int
    body: str

    def encode(self) -> bytes:
        """Encode the packet, length prefix included, for transmission."""
        body_bytes = self.body.encode("utf-8")
        length = MIN_PACKET_SIZE + len(body_bytes)
        return (
            _LENGTH.pack(length)
            + _HEADER.pack(self.request_id, self.packet_type)
            + body_bytes
            + b"\x00\x00"
        )

    @classmethod
    def decode(cls, data: bytes) -> Packet:
        """Decode a packet from raw bytes (excluding the 4-byte length prefix).

        The caller is responsible for reading the 4-byte length prefix and then
        reading exactly that many bytes before passing them here.
        """
        if len(data) < MIN_PACKET_SIZE:
            msg = f"Packet too short: {len(data)} of {MIN_PACKET_SIZE} bytes"
            raise MalformedPacket(msg)
        request_id, packet_type = _HEADER.unpack_from(data, 0)
        body = bytes(data[8:-2]).decode("utf-8", errors="replace")
        return cls(request_id=request_id, packet_type=packet_type, body=body)

    @classmethod
    def from_frame(cls, frame: bytes) -> Packet:
        """Decode a complete frame, length prefix included."""
        if len(frame) < LENGTH_SIZE:
            msg = f"Frame too short: {len(frame)} bytes"
            raise MalformedPacket(msg)
        (length,) = _LENGTH.unpack_from(frame, 0)
        if length != len(frame) - LENGTH_SIZE:
            msg = f"Declared length {length} does not match frame of {len(frame)} bytes"
            raise MalformedPacket(msg)
        return cls.decode(frame[LENGTH_SIZE:])


class PacketReader:
    """Reassemble packets from TCP chunks of arbitrary size.

    Chunks may split a packet or carry several. Feed each chunk as it arrives
    and call ``close()`` once the stream ends. One reader serves one transport.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of their packet."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[Packet]:
        """Append a chunk and return every packet it completes, in order."""
        self._buffer.extend(chunk)
        packets: list[Packet] = []
        while len(self._buffer) >= LENGTH_SIZE:
            (length,) = _LENGTH.unpack_from(self._buffer, 0)
            if length == 0:
                msg = "Received empty response packet"
                raise EmptyResponsePacket(msg)
            if length < MIN_PACKET_SIZE:
                msg = f"Invalid packet length: {length}"
                raise MalformedPacket(msg)

            end = LENGTH_SIZE + length
            if len(self._buffer) < end:
                break

            packets.append(Packet.decode(bytes(self._buffer[LENGTH_SIZE:end])))
            del self._buffer[:end]
        return packets

    def close(self) -> None:
        """Signal end of stream; a truncated final packet is an error."""
        if self._buffer:
            msg = f"Stream ended with {len(self._buffer)} bytes of an incomplete packet"
            raise IncompleteStream(msg)


async def iter_packets(
    reader: asyncio.StreamReader, chunk_size: int = READ_CHUNK_SIZE
) -> AsyncIterator[Packet]:
    """Yield packets from a stream until it closes."""
    packets = PacketReader()
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            packets.close()
            return
        for packet in packets.feed(chunk):
            yield packet
