"""Serial transport for the hive client.

Wraps pyserial to move raw RESP bytes over a serial link.  The receive
method is not frame-aware: it returns whatever arrived within the read
timeout and leaves reassembly to ``hive.resp.Decoder``.

Example:
    >>> from hive.serial_bus import SerialBus
    >>> bus = SerialBus("/dev/ttyUSB0", 115200, 5.0)
    >>> bus.send(b"*1\\r\\n$4\\r\\nPING\\r\\n")
    >>> bus.flush()
    >>> bus.receive()
    b'+PONG\\r\\n'
"""

import logging

import serial

log = logging.getLogger(__name__)


class SerialBus:
    """Duplex serial link with a fixed read timeout.

    Wraps ``serial.Serial``.  Duck-typed -- tests can substitute any
    object with matching ``send``, ``flush``, ``receive``,
    ``reset_input`` and ``close`` methods.

    Args:
        port: Serial port device path (e.g. ``"/dev/ttyUSB0"``).
        baudrate: Baud rate for the connection (e.g. ``115200``).
        timeout: Read timeout in seconds.

    Raises:
        serial.SerialException: If the port cannot be opened.
    """

    def __init__(self, port, baudrate, timeout):
        self._ser = serial.Serial(port, baudrate, timeout=timeout)
        log.debug("opened %s at %d baud (timeout %.1fs)",
                  port, baudrate, timeout)

    def send(self, data):
        """Write *data* to the port in one call."""
        self._ser.write(data)

    def flush(self):
        """Block until all written data has been transmitted."""
        self._ser.flush()

    def receive(self):
        """Return the bytes that arrive within the read timeout.

        Blocks for the first byte (up to the timeout), then takes
        whatever else is already waiting.

        Returns:
            bytes: Received data, or ``b""`` on timeout.

        Example:
            >>> bus.receive()
            b'+PO'
        """
        return self._ser.read(max(1, self._ser.in_waiting))

    def reset_input(self):
        """Discard unread input."""
        self._ser.reset_input_buffer()

    def close(self):
        """Close the serial port."""
        self._ser.close()
