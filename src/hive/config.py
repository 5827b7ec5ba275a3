"""Client defaults and config-file loading.

Central place for the timing parameters of the serial client.  Each
``Client`` takes its own copy, so these are defaults, not globals.

Config lookup order (see :func:`find_config`):

  1. an explicit path (``hive -c PATH``)
  2. the ``HIVE_CONFIG`` environment variable
  3. ``hive.toml`` in ., ~/.config/hive, /etc/hive

Example:
    >>> from hive.config import load_config, MAX_READ_ATTEMPTS
    >>> cfg = load_config("hive.toml")
    >>> cfg["port"]
    '/dev/ttyUSB0'
"""

import os
import tomllib

# Serial read timeout in seconds.
TIMEOUT_S = 5.0

# Time the device needs after the port opens before it answers.
CONNECT_WAIT_S = 3.0

# Decode attempts per command before giving up.
MAX_READ_ATTEMPTS = 50

# Linear backoff unit between decode attempts, in milliseconds.
READ_ATTEMPT_WAIT_MS = 5

# Upper bound on a single backoff sleep, in milliseconds.
READ_ATTEMPT_WAIT_CAP_MS = 250

# Environment variable naming a config file.
CONFIG_ENV = "HIVE_CONFIG"

CONFIG_NAME = "hive.toml"

# Directories searched for CONFIG_NAME, first match wins.
SEARCH_DIRS = (".", "~/.config/hive", "/etc/hive")


def find_config(path: str | None = None) -> str | None:
    """Locate the config file to load.

    An explicit *path* wins, then the file named by ``$HIVE_CONFIG``,
    then the first ``hive.toml`` found in :data:`SEARCH_DIRS`.

    Returns:
        str | None: Absolute path, or None when no file is configured
            and none is found.

    Raises:
        FileNotFoundError: If *path* or ``$HIVE_CONFIG`` names a file
            that does not exist.
    """
    if not path:
        path = os.environ.get(CONFIG_ENV)
    if path:
        full = os.path.abspath(os.path.expanduser(path))
        if not os.path.isfile(full):
            raise FileNotFoundError("config file not found: %s" % full)
        return full

    for directory in SEARCH_DIRS:
        candidate = os.path.join(os.path.expanduser(directory), CONFIG_NAME)
        if os.path.isfile(candidate):
            return os.path.abspath(candidate)
    return None


def load_config(path: str) -> dict:
    """Read a TOML config file and validate it.

    Required: ``[serial]`` section with ``port`` (str) and ``baudrate``
    (int).  Optional: ``serial.timeout`` and ``serial.connect_wait``
    (seconds), and a ``[client]`` section with ``max_attempts``,
    ``backoff_ms`` and ``backoff_cap_ms`` (ints).  Missing optional keys
    are filled from the module defaults.

    Raises:
        ValueError: If any key is missing, has the wrong type, or is out
            of range.

    Example:
        >>> cfg = load_config("hive.toml")
        >>> cfg["max_attempts"]
        50
    """
    with open(path, "rb") as f:
        raw = tomllib.load(f)

    serial_section = _require_section(raw, "serial")
    _require_str(serial_section, "port", "serial.port")
    _require_int(serial_section, "baudrate", "serial.baudrate")
    if serial_section["baudrate"] <= 0:
        raise ValueError(
            "serial.baudrate must be positive, got %d"
            % serial_section["baudrate"]
        )

    result = {
        "port": serial_section["port"],
        "baudrate": serial_section["baudrate"],
        "timeout": _optional_seconds(
            serial_section, "timeout", "serial.timeout", TIMEOUT_S
        ),
        "connect_wait": _optional_seconds(
            serial_section, "connect_wait", "serial.connect_wait",
            CONNECT_WAIT_S,
        ),
    }

    client_section = raw.get("client", {})
    if not isinstance(client_section, dict):
        raise ValueError("[client] must be a table")
    result["max_attempts"] = _optional_int(
        client_section, "max_attempts", "client.max_attempts",
        MAX_READ_ATTEMPTS, minimum=1,
    )
    result["backoff_ms"] = _optional_int(
        client_section, "backoff_ms", "client.backoff_ms",
        READ_ATTEMPT_WAIT_MS, minimum=0,
    )
    result["backoff_cap_ms"] = _optional_int(
        client_section, "backoff_cap_ms", "client.backoff_cap_ms",
        READ_ATTEMPT_WAIT_CAP_MS, minimum=0,
    )

    return result


def _require_section(raw: dict[str, object], name: str) -> dict:
    """Validate that *name* exists in *raw* and is a table."""
    if name not in raw:
        raise ValueError("missing required section: [%s]" % name)
    if not isinstance(raw[name], dict):
        raise ValueError("[%s] must be a table" % name)
    return raw[name]


def _require_str(raw: dict[str, object], key: str, label: str) -> None:
    """Validate that *key* exists in *raw* and is a str."""
    if key not in raw:
        raise ValueError("missing required key: %s" % label)
    if not isinstance(raw[key], str):
        raise ValueError("%s must be str, got %s" % (label, type(raw[key]).__name__))


def _require_int(raw: dict[str, object], key: str, label: str) -> None:
    """Validate that *key* exists in *raw* and is an int."""
    if key not in raw:
        raise ValueError("missing required key: %s" % label)
    # bool is an int subclass; TOML true/false is never a valid count
    if isinstance(raw[key], bool) or not isinstance(raw[key], int):
        raise ValueError("%s must be int, got %s" % (label, type(raw[key]).__name__))


def _optional_int(raw: dict[str, object], key: str, label: str,
                  default: int, minimum: int) -> int:
    """Return int *key* from *raw*, or *default* when absent."""
    if key not in raw:
        return default
    _require_int(raw, key, label)
    if raw[key] < minimum:
        raise ValueError("%s must be >= %d, got %d" % (label, minimum, raw[key]))
    return raw[key]


def _optional_seconds(raw: dict[str, object], key: str, label: str,
                      default: float) -> float:
    """Return a non-negative duration in seconds, or *default*."""
    if key not in raw:
        return default
    value = raw[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("%s must be a number, got %s" % (label, type(value).__name__))
    if value < 0:
        raise ValueError("%s must not be negative, got %s" % (label, value))
    return float(value)
