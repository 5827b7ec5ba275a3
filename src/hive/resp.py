"""RESP encoding and decoding for the hive serial client.

Handles the Redis serialization protocol (RESP2) as described at
https://redis.io/docs/reference/protocol-spec/:

  +simple string\\r\\n      -error\\r\\n      :integer\\r\\n
  $<len>\\r\\n<bytes>\\r\\n  *<count>\\r\\n<elements...>   $-1 / *-1 (null)

Requests are always arrays of bulk strings.  Replies may be any value.

Example:
    >>> from hive.resp import encode_command, parse
    >>> encode_command([b"GET", b"k"])
    b'*2\\r\\n$3\\r\\nGET\\r\\n$1\\r\\nk\\r\\n'
    >>> parse(b":42\\r\\n")
    (42, 5)
"""

import enum
import logging
import re
from dataclasses import dataclass

from hive.errors import ConversionError, ProtocolError, ReplyError

log = logging.getLogger(__name__)

# -- Protocol constants ------------------------------------------------------

RESP_SIMPLE = ord("+")
RESP_ERROR = ord("-")
RESP_INTEGER = ord(":")
RESP_BULK = ord("$")
RESP_ARRAY = ord("*")

CRLF = b"\r\n"

# Largest bulk string accepted (Redis proto-max-bulk-len default).
MAX_BULK_LEN = 512 * 1024 * 1024

# Deepest array nesting accepted in a reply.
MAX_DEPTH = 32

_TYPE_BYTES = frozenset(
    (RESP_SIMPLE, RESP_ERROR, RESP_INTEGER, RESP_BULK, RESP_ARRAY)
)

_INT_RE = re.compile(rb"-?[0-9]+")


class Incomplete(Exception):
    """The buffer ends before the message does."""


# -- Encoding ----------------------------------------------------------------


def encode_command(items) -> bytes:
    """Encode a request: one array of bulk strings.

    Args:
        items: Sequence of bytes objects (verb first).

    Returns:
        bytes: The complete encoded request.

    Raises:
        TypeError: If any item is not bytes-like.

    Example:
        >>> encode_command([b"PING"])
        b'*1\\r\\n$4\\r\\nPING\\r\\n'
    """
    parts = [b"*%d\r\n" % len(items)]
    for item in items:
        if not isinstance(item, (bytes, bytearray, memoryview)):
            raise TypeError(
                "request items must be bytes, got %s" % type(item).__name__
            )
        item = bytes(item)
        parts.append(b"$%d\r\n" % len(item))
        parts.append(item)
        parts.append(CRLF)
    return b"".join(parts)


def encode_value(value) -> bytes:
    """Encode any RESP value.

    ``None`` becomes a null bulk string, ``str`` a simple string,
    ``ReplyError`` an error, ``int`` an integer, bytes a bulk string and
    ``list``/``tuple`` an array.

    Raises:
        TypeError: For unsupported types (including ``bool``).
        ValueError: If a simple string or error contains CR or LF.

    Example:
        >>> encode_value(["a", 1, None])
        b'*3\\r\\n+a\\r\\n:1\\r\\n$-1\\r\\n'
    """
    if value is None:
        return b"$-1\r\n"
    if isinstance(value, ReplyError):
        return b"-" + _line(value.message) + CRLF
    if isinstance(value, str):
        return b"+" + _line(value) + CRLF
    if isinstance(value, bool):
        raise TypeError("RESP has no boolean type")
    if isinstance(value, int):
        return b":%d\r\n" % value
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value)
        return b"$%d\r\n" % len(value) + value + CRLF
    if isinstance(value, (list, tuple)):
        return b"*%d\r\n" % len(value) + b"".join(
            encode_value(v) for v in value
        )
    raise TypeError("cannot encode %s as RESP" % type(value).__name__)


def _line(text: str) -> bytes:
    """Encode single-line text, rejecting embedded line breaks."""
    if "\r" in text or "\n" in text:
        raise ValueError("simple strings must not contain CR or LF")
    return text.encode("utf-8")


# -- Decoding ----------------------------------------------------------------


def parse(buf, pos: int = 0, depth: int = 0):
    """Parse the first complete RESP message in *buf*.

    Args:
        buf: Bytes-like buffer holding received data.
        pos: Offset of the first byte of the message.
        depth: Array nesting level of the message (0 at top level).

    Returns:
        tuple: ``(value, end)`` where *end* is the offset just past the
            message.  Null is returned as ``None``, errors as
            ``ReplyError`` instances (not raised).

    Raises:
        Incomplete: If *buf* does not yet hold the whole message.
        ProtocolError: If the bytes are not valid RESP, or arrays nest
            deeper than ``MAX_DEPTH``.

    Example:
        >>> parse(b"$5\\r\\nhello\\r\\n")
        (b'hello', 11)
        >>> parse(b"*2\\r\\n$-1\\r\\n:7\\r\\n")
        ([None, 7], 13)
    """
    if pos >= len(buf):
        raise Incomplete()

    kind = buf[pos]
    if kind not in _TYPE_BYTES:
        raise ProtocolError(
            "unknown RESP type byte 0x%02X at offset %d" % (kind, pos)
        )

    eol = buf.find(CRLF, pos + 1)
    if eol < 0:
        raise Incomplete()
    line = bytes(buf[pos + 1 : eol])
    end = eol + 2

    if kind == RESP_SIMPLE:
        return line.decode("utf-8", "replace"), end
    if kind == RESP_ERROR:
        return ReplyError(line.decode("utf-8", "replace")), end
    if kind == RESP_INTEGER:
        return _parse_int(line), end

    count = _parse_int(line)
    if count == -1:
        return None, end
    if count < 0:
        raise ProtocolError("negative length %d" % count)

    if kind == RESP_BULK:
        if count > MAX_BULK_LEN:
            raise ProtocolError(
                "bulk length %d exceeds limit %d" % (count, MAX_BULK_LEN)
            )
        stop = end + count
        if len(buf) < stop + 2:
            raise Incomplete()
        if buf[stop : stop + 2] != CRLF:
            raise ProtocolError("bulk string not terminated by CRLF")
        return bytes(buf[end:stop]), stop + 2

    if depth >= MAX_DEPTH:
        raise ProtocolError("arrays nested deeper than %d" % MAX_DEPTH)
    items = []
    for _ in range(count):
        item, end = parse(buf, end, depth + 1)
        items.append(item)
    return items, end


def _parse_int(line: bytes) -> int:
    """Parse a signed decimal header or integer line."""
    if not _INT_RE.fullmatch(line):
        raise ProtocolError("expected integer, got %r" % line)
    return int(line)


# -- Materialization ---------------------------------------------------------


def _as_bytes(value):
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, int):
        return str(value).encode("ascii")
    raise TypeError("not a scalar")


def _as_str(value):
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    raise TypeError("not a scalar")


def _as_int(value):
    if isinstance(value, (int, bytes, str)):
        return int(value)
    raise TypeError("not a scalar")


def _as_float(value):
    if isinstance(value, (int, bytes, str)):
        return float(value)
    raise TypeError("not a scalar")


def _as_bool(value):
    if isinstance(value, int):
        return value != 0
    text = _as_str(value).lower()
    if text in ("1", "true", "ok"):
        return True
    if text in ("0", "false"):
        return False
    raise ValueError("%r is not a boolean" % value)


def _as_list(value):
    if isinstance(value, list):
        return value
    raise TypeError("not an array")


_CONVERTERS = {
    bytes: _as_bytes,
    str: _as_str,
    int: _as_int,
    float: _as_float,
    bool: _as_bool,
    list: _as_list,
}


def materialize(value, dest):
    """Convert a decoded reply to the destination type *dest*.

    *dest* is one of ``object`` (raw value), ``bytes``, ``str``,
    ``int``, ``float``, ``bool`` or ``list``.

    Raises:
        ConversionError: If *dest* is unsupported or *value* does not
            fit it.

    Example:
        >>> materialize(b"12", int)
        12
    """
    if dest is object:
        return value
    try:
        converter = _CONVERTERS.get(dest)
    except TypeError:
        converter = None
    if converter is None:
        raise ConversionError("unsupported destination %r" % (dest,))
    try:
        return converter(value)
    except (TypeError, ValueError) as exc:
        raise ConversionError(
            "cannot convert %s reply to %s: %s"
            % (type(value).__name__, dest.__name__, exc)
        ) from exc


# -- Buffered encoder / decoder ----------------------------------------------


class Encoder:
    """Buffers encoded requests until :meth:`flush`.

    Args:
        bus: Object with ``send(data)`` and ``flush()`` methods.
    """

    def __init__(self, bus):
        self._bus = bus
        self._buf = bytearray()

    def encode(self, items) -> None:
        """Append one request (array of bulk strings) to the buffer."""
        self._buf += encode_command(items)

    def flush(self) -> None:
        """Send everything buffered in a single write, then drain."""
        if self._buf:
            data = bytes(self._buf)
            self._buf.clear()
            self._bus.send(data)
        self._bus.flush()

    def reset(self) -> None:
        """Drop anything buffered but not yet sent."""
        self._buf.clear()


class DecodeStatus(enum.Enum):
    """Outcome of one :meth:`Decoder.decode` attempt."""

    OK = "ok"
    INCOMPLETE = "incomplete"
    NO_DESTINATION = "no-destination"
    NIL = "nil"
    ERROR = "error"


@dataclass
class DecodeResult:
    """Result of a decode attempt.

    ``value`` is set for ``OK``; ``error`` is set for ``ERROR``.
    """

    status: DecodeStatus
    value: object = None
    error: Exception | None = None


class Decoder:
    """Accumulates received bytes and decodes one reply per call.

    Leading bytes that cannot start a message are dropped as line noise.
    Each :meth:`decode` call first tries the bytes already buffered; if
    they do not hold a complete message it reads one chunk from the bus
    (blocking up to the bus timeout) and tries again.

    Args:
        bus: Object with a ``receive()`` method returning bytes
            (``b""`` on timeout).
    """

    def __init__(self, bus):
        self._bus = bus
        self._buf = bytearray()

    @property
    def buffered(self) -> int:
        """Number of received bytes not yet consumed."""
        return len(self._buf)

    def reset(self) -> None:
        """Discard buffered input."""
        self._buf.clear()

    def decode(self, dest=None) -> DecodeResult:
        """Try to decode one reply into *dest*.

        Args:
            dest: Destination type (see :func:`materialize`) or None if
                the caller does not want the payload.

        Returns:
            DecodeResult: ``INCOMPLETE`` while more bytes are needed,
                ``NIL`` for a null reply, ``NO_DESTINATION`` when a
                non-null reply arrives with *dest* None, ``ERROR`` for
                malformed input, error replies or failed conversion,
                otherwise ``OK`` with the converted value.
        """
        result = self._take(dest)
        if result is None:
            chunk = self._bus.receive()
            if chunk:
                self._buf += chunk
            result = self._take(dest)
        if result is None:
            return DecodeResult(DecodeStatus.INCOMPLETE)
        return result

    def _drop_noise(self) -> None:
        """Drop leading bytes that cannot start a RESP message."""
        skip = 0
        while skip < len(self._buf) and self._buf[skip] not in _TYPE_BYTES:
            skip += 1
        if skip:
            log.debug("dropping %d byte(s) of line noise: %r",
                      skip, bytes(self._buf[:skip]))
            del self._buf[:skip]

    def _take(self, dest) -> DecodeResult | None:
        """Consume one message from the buffer, or return None."""
        self._drop_noise()
        try:
            value, end = parse(self._buf)
        except Incomplete:
            return None
        except ProtocolError as exc:
            log.debug("discarding %d bytes of malformed input: %s",
                      len(self._buf), exc)
            self._buf.clear()
            return DecodeResult(DecodeStatus.ERROR, error=exc)

        del self._buf[:end]

        if value is None:
            return DecodeResult(DecodeStatus.NIL)
        if isinstance(value, ReplyError):
            return DecodeResult(DecodeStatus.ERROR, error=value)
        if dest is None:
            return DecodeResult(DecodeStatus.NO_DESTINATION, value=value)
        try:
            return DecodeResult(DecodeStatus.OK, value=materialize(value, dest))
        except ConversionError as exc:
            return DecodeResult(DecodeStatus.ERROR, error=exc)
