# stack_engine/core/durations.py
"""Compose-style durations: '30s', '1m', '1h', '500ms' or bare seconds."""

import re

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)
_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def duration_seconds(value) -> float:
    """Raises ValueError for anything that is not a duration."""
    match = _DURATION.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value}")
    return float(match.group(1)) * _SECONDS[(match.group(2) or "s").lower()]
