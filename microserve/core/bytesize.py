"""Human-readable byte sizes ("1mb", "512kb") to integers."""

from __future__ import annotations

import re

_UNITS = {
    "b": 1,
    "kb": 1 << 10,
    "mb": 1 << 20,
    "gb": 1 << 30,
    "tb": 1 << 40,
    "pb": 1 << 50,
}

_SIZE_PATTERN = re.compile(r"^\s*((?:-|\+)?(?:\d+(?:\.\d*)?|\.\d+))\s*(kb|mb|gb|tb|pb|b)?\s*$", re.IGNORECASE)


def parse_bytes(value: int | str) -> int:
    """Convert a size like ``"1mb"`` or ``1024`` to a byte count.

    Units are 1024-based and case-insensitive. A bare number means bytes.

    Raises:
        ValueError: If the value is not a recognised size.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid byte size: {value!r}")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid byte size: {value!r}")

    match = _SIZE_PATTERN.match(value)
    if match is None:
        raise ValueError(f"Invalid byte size: {value!r}")

    number, unit = match.groups()
    return int(float(number) * _UNITS[(unit or "b").lower()])
