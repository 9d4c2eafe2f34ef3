"""Exceptions raised by the RCON client."""

from __future__ import annotations


class RconError(Exception):
    """Base exception for RCON errors."""


class ConfigurationError(RconError, ValueError):
    """Raised when the client is constructed with invalid settings."""


class ConnectionRefused(RconError):
    """Raised when the TCP connection to the server cannot be established."""


class AuthenticationFailed(RconError):
    """Raised when the server rejects the RCON password."""


class NotConnected(RconError):
    """Raised when a command is sent without a live, authorized connection."""


class RequestTimedOut(RconError):
    """Raised when the server does not answer a request within the timeout."""


class DisconnectedBeforeResponse(RconError):
    """Raised when the connection closes while a request is still pending."""


class MalformedPacket(RconError):
    """Raised when bytes from the server cannot be decoded as a packet."""


class EmptyResponsePacket(MalformedPacket):
    """Raised when the server sends a packet with a declared length of zero."""


class IncompleteStream(MalformedPacket):
    """Raised when the stream ends in the middle of a packet."""
