"""
Parsing helpers for human-friendly durations and byte sizes.

Durations: "30d", "720h", "1h30m", "90s", "2w". A bare number is read in
the caller's default unit.
Sizes: "0", "512", "10KB", "10MB", "1GiB".
"""

import re
from datetime import timedelta
from typing import Optional


_DURATION_UNITS = {
    'ms': timedelta(milliseconds=1),
    's': timedelta(seconds=1),
    'm': timedelta(minutes=1),
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
    'w': timedelta(weeks=1),
}

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h|d|w)')

_SIZE_UNITS = {
    '': 1,
    'B': 1,
    'KB': 1000,
    'MB': 1000 ** 2,
    'GB': 1000 ** 3,
    'TB': 1000 ** 4,
    'KIB': 1024,
    'MIB': 1024 ** 2,
    'GIB': 1024 ** 3,
    'TIB': 1024 ** 4,
}

_SIZE_PATTERN = re.compile(r'^(\d+(?:\.\d+)?)\s*([a-zA-Z]*)$')


def parse_duration(value, default_unit: Optional[str] = None) -> timedelta:
    """
    Parse a duration string into a timedelta.

    Args:
        value: Duration string such as "30d" or "1h30m", or a number
        default_unit: Unit applied to bare numbers (e.g. 'm'); bare numbers
            are rejected when not given

    Returns:
        Parsed timedelta

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, timedelta):
        return value

    text = str(value).strip()
    if not text:
        raise ValueError("Empty duration")

    if re.fullmatch(r'\d+(?:\.\d+)?', text):
        if default_unit is None:
            raise ValueError(f"Duration {text!r} is missing a unit")
        return float(text) * _DURATION_UNITS[default_unit]

    total = timedelta()
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"Invalid duration: {value!r}")

    return total


def parse_bytes(value) -> int:
    """
    Parse a byte size such as "10MB" or "1GiB" into an integer.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, int):
        return value

    match = _SIZE_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid byte size: {value!r}")

    number, unit = match.groups()
    multiplier = _SIZE_UNITS.get(unit.upper())
    if multiplier is None:
        raise ValueError(f"Unknown byte size unit {unit!r} in {value!r}")

    return int(float(number) * multiplier)
