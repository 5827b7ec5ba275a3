"""Synchronous RESP command client over a serial link.

One ``Client`` owns one bus.  Each :meth:`Client.command` call holds
the client lock while it sends a request and reads back exactly one
reply, so concurrent callers never interleave on the wire.

Serial devices deliver replies in pieces.  A decode attempt that finds
an incomplete message is retried with a linearly growing sleep
(``attempt * backoff_ms``, capped at ``backoff_cap_ms``) until a
complete reply arrives or ``max_attempts`` is used up.

Example:
    >>> from hive.client import open_client
    >>> with open_client("/dev/ttyUSB0", 115200) as client:
    ...     client.command(None, "SET", "answer", 42)
    ...     client.command(int, "GET", "answer")
    42
"""

import logging
import threading
import time

from hive.coerce import to_bytes_list
from hive.config import (
    CONNECT_WAIT_S,
    MAX_READ_ATTEMPTS,
    READ_ATTEMPT_WAIT_CAP_MS,
    READ_ATTEMPT_WAIT_MS,
    TIMEOUT_S,
)
from hive.errors import MaxReadAttemptsExceeded, NilReply
from hive.resp import Decoder, DecodeStatus, Encoder
from hive.serial_bus import SerialBus

log = logging.getLogger(__name__)


class Client:
    """RESP command client bound to a single bus.

    Args:
        bus: Object with ``send(data)``, ``flush()``, ``receive()``,
            ``reset_input()`` and ``close()`` methods.
        max_attempts: Decode attempts per command before giving up.
        backoff_ms: Linear backoff unit between decode attempts.
        backoff_cap_ms: Upper bound for a single backoff sleep.

    Example:
        >>> client = Client(bus)
        >>> client.command(str, "PING")
        'PONG'
    """

    def __init__(self, bus, max_attempts: int = MAX_READ_ATTEMPTS,
                 backoff_ms: int = READ_ATTEMPT_WAIT_MS,
                 backoff_cap_ms: int = READ_ATTEMPT_WAIT_CAP_MS):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1, got %d" % max_attempts)
        self._bus = bus
        self._lock = threading.Lock()
        self._encoder = Encoder(bus)
        self._decoder = Decoder(bus)
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.backoff_cap_ms = backoff_cap_ms

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        """Close the underlying bus.  The client must not be used after."""
        with self._lock:
            self._bus.close()

    def backoff(self, attempt: int) -> float:
        """Return the sleep in seconds after failed attempt *attempt*.

        Example:
            >>> Client(bus, backoff_ms=5).backoff(3)
            0.015
        """
        return min(attempt * self.backoff_ms, self.backoff_cap_ms) / 1000.0

    def command(self, dest, *args):
        """Send one command and return its reply.

        Args:
            dest: Type to convert the reply to (``object``, ``bytes``,
                ``str``, ``int``, ``float``, ``bool`` or ``list``), or
                None when the payload is not wanted.
            *args: Verb followed by its arguments; each is converted
                with :func:`hive.coerce.to_bytes`.  With no arguments an
                empty array is sent and the peer decides the reply.

        Returns:
            The reply converted to *dest*, or None if *dest* is None.

        Raises:
            NilReply: The peer answered with the RESP null.
            MaxReadAttemptsExceeded: No complete reply within
                ``max_attempts`` decode attempts.
            ReplyError: The peer answered with a RESP error.
            ProtocolError: The reply bytes are not valid RESP.
            ConversionError: The reply does not fit *dest*.
            TypeError: An argument cannot be converted to bytes.
            serial.SerialException: The transport failed.

        Example:
            >>> client.command(list, "KEYS")
            [b'answer']
        """
        with self._lock:
            items = to_bytes_list(args)
            if items:
                log.debug("sending %r with %d argument(s)",
                          items[0], len(items) - 1)
            else:
                log.debug("sending empty command")

            # A reply that arrived after an earlier command gave up
            # must not be taken for this command's reply.
            self._bus.reset_input()
            self._decoder.reset()
            self._encoder.reset()

            self._encoder.encode(items)
            self._encoder.flush()

            result = self._read_reply(dest)

        if result.status is DecodeStatus.OK:
            return result.value
        if result.status is DecodeStatus.NO_DESTINATION and dest is None:
            return None
        if result.status is DecodeStatus.NIL:
            log.debug("nil reply")
            raise NilReply()
        raise result.error

    def _read_reply(self, dest):
        """Decode until a terminal result or the attempt budget runs out."""
        for attempt in range(self.max_attempts):
            result = self._decoder.decode(dest)
            if result.status is not DecodeStatus.INCOMPLETE:
                return result
            if attempt + 1 < self.max_attempts:
                delay = self.backoff(attempt)
                log.debug("incomplete reply (attempt %d, %d bytes buffered), "
                          "retrying in %.3fs",
                          attempt + 1, self._decoder.buffered, delay)
                time.sleep(delay)

        log.warning("no complete reply after %d attempts", self.max_attempts)
        raise MaxReadAttemptsExceeded(self.max_attempts)


def open_client(port: str, baudrate: int, timeout: float = TIMEOUT_S,
                connect_wait: float = CONNECT_WAIT_S, **options) -> Client:
    """Open a serial port and return a ready client.

    Waits *connect_wait* seconds after opening so the device can finish
    initializing before the first command.

    Args:
        port: Serial port device path.
        baudrate: Baud rate.
        timeout: Serial read timeout in seconds.
        connect_wait: Settle delay after opening, in seconds.
        **options: ``max_attempts``, ``backoff_ms``, ``backoff_cap_ms``
            passed on to :class:`Client`.

    Raises:
        serial.SerialException: If the port cannot be opened.

    Example:
        >>> client = open_client("/dev/ttyUSB0", 115200, connect_wait=1.0)
    """
    bus = SerialBus(port, baudrate, timeout)
    log.info("connected: port=%s baudrate=%d", port, baudrate)
    log.debug("waiting %.1fs for device to settle", connect_wait)
    time.sleep(connect_wait)
    return Client(bus, **options)
