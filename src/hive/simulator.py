"""Virtual RESP device for hive.

Listens on a serial port (typically a socat PTY) and answers RESP
commands from an in-memory key/value store.  Replies are written in
small pieces with a short gap between them, the way slow serial
firmware delivers them, so the client's retry loop gets exercised.

Usage:
    python -m hive.simulator <port> <baudrate> [--chunk N] [--gap S]

Example:
    Pair two PTYs and point the client at the other end::

        socat -d -d pty,raw,echo=0,link=/tmp/hive-dev pty,raw,echo=0,link=/tmp/hive-host
        python -m hive.simulator /tmp/hive-dev 115200
        hive -p /tmp/hive-host -b 115200 PING
"""

import argparse
import logging
import time

from hive.errors import ProtocolError, ReplyError
from hive.resp import Incomplete, encode_value, parse
from hive.serial_bus import SerialBus

log = logging.getLogger(__name__)


class Responder:
    """Computes replies for decoded requests.

    Keys and values are stored as bytes.  Unknown verbs and wrong
    arity produce ``ReplyError`` values, like a Redis server would.

    Example:
        >>> r = Responder()
        >>> r.handle([b"SET", b"k", b"v"])
        'OK'
        >>> r.handle([b"GET", b"k"])
        b'v'
    """

    # verb -> (min args, max args or None for unbounded)
    _ARITY = {
        "PING": (0, 1),
        "ECHO": (1, 1),
        "SET": (2, 2),
        "GET": (1, 1),
        "DEL": (1, None),
        "EXISTS": (1, None),
        "INCR": (1, 1),
        "KEYS": (0, 0),
    }

    def __init__(self):
        self.store = {}

    def handle(self, request):
        """Return the reply value for one request (list of bytes)."""
        if not isinstance(request, list) or not request:
            return ReplyError("ERR Protocol error: expected array of bulk strings")
        if not all(isinstance(item, bytes) for item in request):
            return ReplyError("ERR Protocol error: expected array of bulk strings")

        verb = request[0].decode("utf-8", "replace").upper()
        args = request[1:]

        if verb not in self._ARITY:
            return ReplyError("ERR unknown command '%s'" % verb.lower())
        lo, hi = self._ARITY[verb]
        if len(args) < lo or (hi is not None and len(args) > hi):
            return ReplyError(
                "ERR wrong number of arguments for '%s' command" % verb.lower()
            )

        return getattr(self, "_cmd_" + verb.lower())(args)

    def _cmd_ping(self, args):
        return args[0] if args else "PONG"

    def _cmd_echo(self, args):
        return args[0]

    def _cmd_set(self, args):
        self.store[args[0]] = args[1]
        return "OK"

    def _cmd_get(self, args):
        return self.store.get(args[0])

    def _cmd_del(self, args):
        removed = 0
        for key in args:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def _cmd_exists(self, args):
        return sum(1 for key in args if key in self.store)

    def _cmd_incr(self, args):
        raw = self.store.get(args[0], b"0")
        try:
            value = int(raw) + 1
        except ValueError:
            return ReplyError("ERR value is not an integer or out of range")
        self.store[args[0]] = str(value).encode("ascii")
        return value

    def _cmd_keys(self, args):
        return sorted(self.store)


def split_chunks(data: bytes, size: int) -> list[bytes]:
    """Split *data* into pieces of at most *size* bytes.

    Example:
        >>> split_chunks(b"+PONG\\r\\n", 3)
        [b'+PO', b'NG\\r', b'\\n']
    """
    if size <= 0:
        return [data]
    return [data[i : i + size] for i in range(0, len(data), size)]


def serve_once(bus, responder: Responder, buf: bytearray,
               chunk: int = 0, gap: float = 0.0) -> int:
    """Read from *bus* and answer every complete request in *buf*.

    Malformed input is answered with a protocol error and dropped.

    Returns:
        int: Number of replies sent.
    """
    data = bus.receive()
    if data:
        buf += data

    sent = 0
    while buf:
        try:
            request, end = parse(buf)
        except Incomplete:
            break
        except ProtocolError as exc:
            log.debug("dropping %d bytes: %s", len(buf), exc)
            buf.clear()
            request, end = None, 0
        else:
            del buf[:end]

        reply = encode_value(responder.handle(request))
        pieces = split_chunks(reply, chunk)
        for i, piece in enumerate(pieces):
            if i and gap:
                time.sleep(gap)
            bus.send(piece)
        bus.flush()
        sent += 1
    return sent


def run(port: str, baudrate: int, chunk: int, gap: float) -> None:
    """Run the simulator loop until interrupted."""
    bus = SerialBus(port, baudrate, 0.1)
    responder = Responder()
    buf = bytearray()

    log.info("listening on %s (chunk=%d gap=%.3fs)", port, chunk, gap)

    try:
        while True:
            serve_once(bus, responder, buf, chunk, gap)
    except KeyboardInterrupt:
        pass
    finally:
        bus.close()


def main(argv=None) -> None:
    """CLI entry point for the simulator."""
    parser = argparse.ArgumentParser(description="hive RESP device simulator")
    parser.add_argument("port", help="serial port path, e.g. /tmp/hive-dev")
    parser.add_argument("baudrate", type=int, help="baud rate")
    parser.add_argument(
        "--chunk", type=int, default=3,
        help="bytes per write when sending replies (0 = whole reply)",
    )
    parser.add_argument(
        "--gap", type=float, default=0.01,
        help="seconds between reply pieces",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )
    run(args.port, args.baudrate, args.chunk, args.gap)


if __name__ == "__main__":
    main()
