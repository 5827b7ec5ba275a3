"""Tests for hive.client."""

import threading
from unittest.mock import MagicMock, call, patch

import pytest
import serial

from conftest import EchoBus, FakeBus
from hive.client import Client, open_client
from hive.config import CONNECT_WAIT_S, MAX_READ_ATTEMPTS, TIMEOUT_S
from hive.errors import (
    ConversionError,
    MaxReadAttemptsExceeded,
    NilReply,
    ProtocolError,
    ReplyError,
)
from hive.resp import parse


@pytest.fixture(autouse=True)
def no_sleep():
    """Keep the backoff loop from actually sleeping."""
    with patch("hive.client.time.sleep") as mock_sleep:
        yield mock_sleep


class TestCommandRequest:
    """Tests for what Client.command puts on the wire."""

    def test_request_is_array_of_bulk_strings(self):
        """Arguments are coerced and sent as one RESP array."""
        bus = FakeBus([b"+OK\r\n"])
        client = Client(bus)

        client.command(None, "SET", "answer", 42)

        assert bus.sent == [
            b"*3\r\n$3\r\nSET\r\n$6\r\nanswer\r\n$2\r\n42\r\n"
        ]

    def test_request_sent_in_one_write_then_flushed(self):
        """Input is reset, the request written once, then flushed."""
        bus = FakeBus([b"+OK\r\n"])
        client = Client(bus)

        client.command(None, "PING")

        assert bus.calls[:3] == ["reset_input", "send", "flush"]
        assert bus.calls[3:] == ["receive"]

    def test_empty_command_sends_empty_array(self):
        """A command without arguments is sent as an empty array."""
        bus = FakeBus([b"-ERR empty command\r\n"])
        client = Client(bus)

        with pytest.raises(ReplyError):
            client.command(None)
        assert bus.sent == [b"*0\r\n"]

    def test_unconvertible_argument(self):
        """An argument outside the coercion rules raises TypeError."""
        bus = FakeBus()
        client = Client(bus)

        with pytest.raises(TypeError):
            client.command(None, "SET", "k", object())
        assert bus.sent == []

    def test_send_failure_propagates(self):
        """A transport error while writing reaches the caller unchanged."""
        bus = FakeBus()
        bus.send = MagicMock(side_effect=OSError("device gone"))
        client = Client(bus)

        with pytest.raises(OSError, match="device gone"):
            client.command(None, "PING")
        assert bus.receives == 0

    def test_stale_input_discarded(self):
        """Bytes left from an earlier command do not answer the next one."""
        bus = FakeBus([b"+LATE"])
        client = Client(bus, max_attempts=1)
        with pytest.raises(MaxReadAttemptsExceeded):
            client.command(str, "PING")

        bus.feed(b"+PONG\r\n")
        assert client.command(str, "PING") == "PONG"


class TestCommandReply:
    """Tests for reply handling in Client.command."""

    def test_ping_in_three_chunks(self, no_sleep):
        """PONG split over three reads takes exactly three attempts."""
        bus = FakeBus([b"+PO", b"NG", b"\r\n"])
        client = Client(bus)

        assert client.command(str, "PING") == "PONG"
        assert bus.receives == 3
        assert no_sleep.call_args_list == [call(0.0), call(0.005)]

    def test_backoff_non_decreasing(self, no_sleep):
        """Sleeps between attempts grow linearly from zero."""
        bus = FakeBus([b"", b"", b"", b"", b":1\r\n"])
        client = Client(bus, backoff_ms=10)

        assert client.command(int, "INCR", "k") == 1
        delays = [c.args[0] for c in no_sleep.call_args_list]
        assert delays == [0.0, 0.01, 0.02, 0.03]

    def test_backoff_capped(self):
        """A single backoff sleep never exceeds backoff_cap_ms."""
        client = Client(FakeBus(), backoff_ms=5, backoff_cap_ms=20)
        assert client.backoff(0) == 0.0
        assert client.backoff(3) == 0.015
        assert client.backoff(49) == 0.02

    def test_max_attempts_exceeded(self, no_sleep):
        """No complete reply within the budget raises MaxReadAttemptsExceeded."""
        bus = FakeBus()
        client = Client(bus, max_attempts=7)

        with pytest.raises(MaxReadAttemptsExceeded) as excinfo:
            client.command(str, "PING")
        assert excinfo.value.attempts == 7
        assert bus.receives == 7
        # no sleep after the final attempt
        assert no_sleep.call_count == 6

    def test_default_attempt_budget(self):
        """The default budget is MAX_READ_ATTEMPTS decode attempts."""
        bus = FakeBus()
        client = Client(bus)

        with pytest.raises(MaxReadAttemptsExceeded):
            client.command(None, "PING")
        assert bus.receives == MAX_READ_ATTEMPTS

    def test_partial_reply_never_completes(self):
        """A reply that stops halfway still ends in MaxReadAttemptsExceeded."""
        bus = FakeBus([b"$10\r\nhel"])
        client = Client(bus, max_attempts=5)

        with pytest.raises(MaxReadAttemptsExceeded):
            client.command(bytes, "GET", "k")

    def test_nil_reply(self):
        """A null bulk string raises NilReply."""
        client = Client(FakeBus([b"$-1\r\n"]))
        with pytest.raises(NilReply):
            client.command(bytes, "GET", "missing")

    def test_nil_reply_without_destination(self):
        """NilReply is raised even when no destination was given."""
        client = Client(FakeBus([b"*-1\r\n"]))
        with pytest.raises(NilReply):
            client.command(None, "GET", "missing")

    def test_no_destination_is_success(self):
        """A value reply with dest None returns None without error."""
        client = Client(FakeBus([b"+OK\r\n"]))
        assert client.command(None, "SET", "k", "v") is None

    def test_reply_error_propagates(self):
        """A RESP error reply is raised as ReplyError."""
        client = Client(FakeBus([b"-ERR unknown command 'nope'\r\n"]))
        with pytest.raises(ReplyError) as excinfo:
            client.command(str, "NOPE")
        assert excinfo.value.kind == "ERR"

    def test_reply_error_without_destination(self):
        """ReplyError is raised even when no destination was given."""
        client = Client(FakeBus([b"-ERR wrong\r\n"]))
        with pytest.raises(ReplyError):
            client.command(None, "SET", "k")

    def test_malformed_reply(self):
        """Garbage on the wire raises ProtocolError without retrying."""
        bus = FakeBus([b"$x\r\n"])
        client = Client(bus)

        with pytest.raises(ProtocolError):
            client.command(str, "PING")
        assert bus.receives == 1

    def test_line_noise_before_reply(self):
        """Stray bytes ahead of the reply are skipped and the read retried."""
        bus = FakeBus([b"\x00", b"+PONG\r\n"])
        client = Client(bus)

        assert client.command(str, "PING") == "PONG"
        assert bus.receives == 2

    def test_deeply_nested_reply(self):
        """A reply nested beyond the parser limit raises ProtocolError."""
        bus = FakeBus([b"*1\r\n" * 5000 + b":1\r\n"])
        client = Client(bus)

        with pytest.raises(ProtocolError):
            client.command(list, "LRANGE", "l", 0, -1)
        assert bus.receives == 1

    def test_conversion_error(self):
        """A reply that does not fit the destination raises ConversionError."""
        client = Client(FakeBus([b"$3\r\nabc\r\n"]))
        with pytest.raises(ConversionError):
            client.command(int, "GET", "k")

    def test_typed_destinations(self):
        """Replies are converted to the destination type."""
        bus = FakeBus([
            b"$2\r\n42\r\n",
            b"$3\r\n1.5\r\n",
            b":1\r\n",
            b"*2\r\n$1\r\na\r\n:3\r\n",
            b"$3\r\nabc\r\n",
        ])
        client = Client(bus)

        assert client.command(int, "GET", "i") == 42
        assert client.command(float, "GET", "f") == 1.5
        assert client.command(bool, "EXISTS", "k") is True
        assert client.command(list, "LRANGE", "l", 0, -1) == [b"a", 3]
        assert client.command(object, "GET", "s") == b"abc"


class TestConcurrency:
    """Tests for serialization of concurrent commands."""

    def test_requests_never_interleave(self):
        """Concurrent commands each get their own reply, one write each."""
        bus = EchoBus()
        client = Client(bus)
        verbs = ["CMD%d" % i for i in range(8)]
        results = {}
        errors = []

        def worker(verb):
            try:
                results[verb] = client.command(str, verb)
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(v,)) for v in verbs]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert results == {v: v for v in verbs}
        assert len(bus.sent) == len(verbs)
        for data in bus.sent:
            request, end = parse(data)
            assert end == len(data)
            assert len(request) == 1


class TestLifecycle:
    """Tests for open_client and Client.close."""

    @patch("hive.client.SerialBus")
    def test_open_client_waits_to_settle(self, mock_bus_cls, no_sleep):
        """open_client opens the bus with the timeout, then sleeps."""
        client = open_client("/dev/ttyUSB0", 115200)

        mock_bus_cls.assert_called_once_with("/dev/ttyUSB0", 115200, TIMEOUT_S)
        no_sleep.assert_called_once_with(CONNECT_WAIT_S)
        assert isinstance(client, Client)

    @patch("hive.client.SerialBus")
    def test_open_client_passes_options(self, mock_bus_cls):
        """Tuning options reach the client."""
        client = open_client("/dev/ttyUSB0", 9600, timeout=1.0,
                             connect_wait=0, max_attempts=3, backoff_ms=2,
                             backoff_cap_ms=4)

        mock_bus_cls.assert_called_once_with("/dev/ttyUSB0", 9600, 1.0)
        assert client.max_attempts == 3
        assert client.backoff_ms == 2
        assert client.backoff_cap_ms == 4

    @patch("hive.client.SerialBus")
    def test_open_failure_propagates(self, mock_bus_cls, no_sleep):
        """A transport error while opening propagates, without settling."""
        mock_bus_cls.side_effect = serial.SerialException("no such device")

        with pytest.raises(serial.SerialException, match="no such device"):
            open_client("/dev/missing", 9600)
        no_sleep.assert_not_called()

    def test_context_manager_closes_bus(self):
        """Leaving the with-block closes the bus."""
        bus = FakeBus()
        with Client(bus):
            pass
        assert bus.closed

    def test_invalid_max_attempts(self):
        """max_attempts below one is rejected."""
        with pytest.raises(ValueError):
            Client(FakeBus(), max_attempts=0)
