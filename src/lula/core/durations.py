"""Duration strings in the ``1h2m30s`` / ``500ms`` form used by validation specs."""

from __future__ import annotations

import re

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration string into seconds.

    >>> parse_duration("1m30s")
    90.0
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("empty duration")
    if text == "0":
        return 0.0

    pos = 0
    total = 0.0
    for m in _PART.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()

    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total
