"""Shared test doubles for hive tests."""

import threading


class FakeBus:
    """Test double for SerialBus: canned chunks, records writes.

    Each ``receive()`` returns the next canned chunk, or ``b""`` once
    they are used up (a read timeout).
    """

    def __init__(self, chunks: list[bytes] | None = None):
        """Initialize with canned chunks."""
        self._chunks = list(chunks or [])
        self.sent = []
        self.calls = []
        self.receives = 0
        self.closed = False

    def feed(self, *chunks: bytes) -> None:
        """Queue more chunks for later ``receive()`` calls."""
        self._chunks.extend(chunks)

    def send(self, data: bytes) -> None:
        """Record *data* for later inspection."""
        self.calls.append("send")
        self.sent.append(data)

    def flush(self) -> None:
        """Record the flush."""
        self.calls.append("flush")

    def receive(self) -> bytes:
        """Return the next canned chunk, or empty bytes if exhausted."""
        self.calls.append("receive")
        self.receives += 1
        if self._chunks:
            return self._chunks.pop(0)
        return b""

    def reset_input(self) -> None:
        """Record the input reset."""
        self.calls.append("reset_input")

    def close(self) -> None:
        """Mark the bus closed."""
        self.closed = True


class EchoBus:
    """Thread-safe test double that answers each request with its verb.

    The reply to ``*1\\r\\n$4\\r\\nPING\\r\\n`` is the bulk string
    ``PING``, delivered one byte per ``receive()`` so several decode
    attempts are needed per command.
    """

    def __init__(self):
        """Initialize empty write log and pending reply."""
        self._mu = threading.Lock()
        self.sent = []
        self._pending = b""

    def send(self, data: bytes) -> None:
        """Record the request and queue its reply."""
        with self._mu:
            self.sent.append(data)
            verb = data.split(b"\r\n")[2]
            self._pending += b"$%d\r\n%s\r\n" % (len(verb), verb)

    def flush(self) -> None:
        """No-op for test compatibility."""

    def receive(self) -> bytes:
        """Return one byte of the pending reply."""
        with self._mu:
            out, self._pending = self._pending[:1], self._pending[1:]
            return out

    def reset_input(self) -> None:
        """No-op: pending bytes belong to the current request."""

    def close(self) -> None:
        """No-op for test compatibility."""
