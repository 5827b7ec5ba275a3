"""Exceptions raised by the hive client.

Transport failures come straight from pyserial; ``TransportError`` is
the name this package uses for them.
"""

import serial

TransportError = serial.SerialException


class HiveError(Exception):
    """Base class for client-side command failures."""


class NilReply(HiveError):
    """The peer answered with the RESP null marker."""

    def __init__(self, message="Received a nil response."):
        super().__init__(message)


class MaxReadAttemptsExceeded(HiveError):
    """No complete reply arrived within the read attempt budget."""

    def __init__(self, attempts):
        super().__init__(
            "Exceeded maximum read attempts (%d)." % attempts
        )
        self.attempts = attempts


class ProtocolError(HiveError, ValueError):
    """Bytes on the wire cannot be parsed as RESP."""


class ConversionError(HiveError, ValueError):
    """A decoded reply cannot be converted to the requested type."""


class ReplyError(HiveError):
    """The peer answered with a RESP error (``-ERR ...``).

    Args:
        message: Full error text as sent by the peer.

    Example:
        >>> err = ReplyError("WRONGTYPE Operation against a key")
        >>> err.kind
        'WRONGTYPE'
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        """Leading word of the error text, e.g. ``ERR``."""
        return self.message.split(" ", 1)[0] if self.message else ""

    def __eq__(self, other):
        if not isinstance(other, ReplyError):
            return NotImplemented
        return self.message == other.message

    def __hash__(self):
        return hash(self.message)
