"""RESP command client for serial links.

Example:
    >>> from hive import open_client
    >>> client = open_client("/dev/ttyUSB0", 115200)
    >>> client.command(str, "PING")
    'PONG'
"""

from hive.client import Client, open_client
from hive.errors import (
    ConversionError,
    HiveError,
    MaxReadAttemptsExceeded,
    NilReply,
    ProtocolError,
    ReplyError,
    TransportError,
)

__all__ = [
    "Client",
    "open_client",
    "ConversionError",
    "HiveError",
    "MaxReadAttemptsExceeded",
    "NilReply",
    "ProtocolError",
    "ReplyError",
    "TransportError",
]
