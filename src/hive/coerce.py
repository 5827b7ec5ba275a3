"""Argument coercion for outgoing commands.

Every command argument travels as a RESP bulk string, so each value is
turned into bytes by a small, closed set of rules.

Example:
    >>> to_bytes_list(["SET", "answer", 42])
    [b'SET', b'answer', b'42']
"""

import decimal
import math


def format_float(value: float) -> str:
    """Format a float the way Go's ``FormatFloat(v, "g", -1, 64)`` does.

    Uses the shortest digits that round-trip.  Exponent form is used
    when the decimal exponent is below -4 or at least 6; whole numbers
    carry no trailing ``.0``.

    Example:
        >>> format_float(1.0), format_float(1e6), format_float(123456.5)
        ('1', '1e+06', '123456.5')
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"

    sign, raw_digits, exponent = decimal.Decimal(repr(value)).as_tuple()
    prefix = "-" if sign else ""
    digits = "".join(str(d) for d in raw_digits).lstrip("0")
    # position of the decimal point relative to the first digit
    point = len(digits) + exponent
    digits = digits.rstrip("0")
    if not digits:
        return prefix + "0"

    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = digits[0]
        if len(digits) > 1:
            mantissa += "." + digits[1:]
        return "%s%se%+03d" % (prefix, mantissa, exp)
    if point <= 0:
        return "%s0.%s%s" % (prefix, "0" * -point, digits)
    if point >= len(digits):
        return prefix + digits + "0" * (point - len(digits))
    return "%s%s.%s" % (prefix, digits[:point], digits[point:])


def to_bytes(value) -> bytes:
    """Convert a single command argument to bytes.

    Rules, in order: bytes-like values are copied, ``bool`` becomes
    ``b"true"``/``b"false"``, ``int`` is written in decimal, ``float``
    uses :func:`format_float`, ``str`` is UTF-8 encoded and
    ``None`` becomes ``b""``.

    Raises:
        TypeError: For any other type.

    Example:
        >>> to_bytes(True), to_bytes(1.5), to_bytes("ok")
        (b'true', b'1.5', b'ok')
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return b"true" if value else b"false"
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return format_float(value).encode("ascii")
    if isinstance(value, str):
        return value.encode("utf-8")
    if value is None:
        return b""
    raise TypeError(
        "cannot convert %s to a command argument" % type(value).__name__
    )


def to_bytes_list(values) -> list[bytes]:
    """Convert an argument sequence with :func:`to_bytes`."""
    return [to_bytes(v) for v in values]
