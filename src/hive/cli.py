"""Command-line tool -- send one command to a serial RESP device.

Connection settings come from a TOML config file (``-c``, ``$HIVE_CONFIG``
or the first ``hive.toml`` found), from ``-p``/``-b``, or from both
(the options win).  The reply is printed the way redis-cli prints it.

Example:
    Run from the command line::

        hive -c hive.toml SET answer 42
        hive -p /dev/ttyUSB0 -b 115200 -v GET answer
"""

import argparse
import logging
import sys

from hive.client import open_client
from hive.config import (
    CONNECT_WAIT_S,
    MAX_READ_ATTEMPTS,
    READ_ATTEMPT_WAIT_CAP_MS,
    READ_ATTEMPT_WAIT_MS,
    TIMEOUT_S,
    find_config,
    load_config,
)
from hive.errors import HiveError, NilReply, ReplyError, TransportError

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REPLY_ERROR = 1
EXIT_FAILURE = 2


def format_reply(value) -> list[str]:
    """Render a decoded reply as redis-cli style lines.

    Example:
        >>> format_reply([b"a", 7])
        ['1) "a"', '2) (integer) 7']
    """
    if value is None:
        return ["(nil)"]
    if isinstance(value, ReplyError):
        return ["(error) %s" % value.message]
    if isinstance(value, str):
        return [value]
    if isinstance(value, int):
        return ["(integer) %d" % value]
    if isinstance(value, bytes):
        return ['"%s"' % value.decode("utf-8", "backslashreplace")]
    if not value:
        return ["(empty array)"]

    lines = []
    width = len(str(len(value)))
    for i, item in enumerate(value, start=1):
        prefix = "%*d) " % (width, i)
        sub = format_reply(item)
        lines.append(prefix + sub[0])
        pad = " " * len(prefix)
        lines.extend(pad + line for line in sub[1:])
    return lines


def build_settings(args, parser) -> dict:
    """Merge config file values and command-line overrides."""
    path = find_config(args.config)
    if path is not None:
        log.debug("loading config from %s", path)
        cfg = load_config(path)
    else:
        cfg = {
            "port": None,
            "baudrate": None,
            "timeout": TIMEOUT_S,
            "connect_wait": CONNECT_WAIT_S,
            "max_attempts": MAX_READ_ATTEMPTS,
            "backoff_ms": READ_ATTEMPT_WAIT_MS,
            "backoff_cap_ms": READ_ATTEMPT_WAIT_CAP_MS,
        }

    if args.port is not None:
        cfg["port"] = args.port
    if args.baudrate is not None:
        cfg["baudrate"] = args.baudrate

    if cfg["port"] is None or cfg["baudrate"] is None:
        parser.error(
            "no config file found; need -c CONFIG, or both -p PORT and -b BAUDRATE"
        )
    return cfg


def main(argv=None) -> int:
    """CLI entry point -- parse args, connect, send, print the reply.

    Returns:
        int: 0 on success (including a nil reply), 1 when the device
            answered with an error, 2 on any other failure.
    """
    parser = argparse.ArgumentParser(
        description="send a command to a serial RESP device",
    )
    parser.add_argument(
        "-c", "--config",
        help="TOML config file (default: $HIVE_CONFIG, then hive.toml search)",
    )
    parser.add_argument("-p", "--port", help="serial port (overrides config)")
    parser.add_argument(
        "-b", "--baudrate", type=int, help="baud rate (overrides config)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    parser.add_argument("verb", help="command verb, e.g. PING")
    parser.add_argument("arguments", nargs="*", help="command arguments")
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=level,
    )

    try:
        cfg = build_settings(args, parser)
    except (FileNotFoundError, ValueError) as exc:
        log.error("bad configuration: %s", exc)
        return EXIT_FAILURE

    try:
        client = open_client(
            cfg["port"], cfg["baudrate"],
            timeout=cfg["timeout"],
            connect_wait=cfg["connect_wait"],
            max_attempts=cfg["max_attempts"],
            backoff_ms=cfg["backoff_ms"],
            backoff_cap_ms=cfg["backoff_cap_ms"],
        )
    except TransportError as exc:
        log.error("cannot open %s: %s", cfg["port"], exc)
        return EXIT_FAILURE

    with client:
        try:
            reply = client.command(object, args.verb, *args.arguments)
        except NilReply:
            reply = None
        except ReplyError as exc:
            print("(error) %s" % exc.message)
            return EXIT_REPLY_ERROR
        except (HiveError, TransportError) as exc:
            log.error("%s failed: %s", args.verb, exc)
            return EXIT_FAILURE

    for line in format_reply(reply):
        print(line)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
