"""Parsing helpers for the string forms used in cluster specs."""

import re
from typing import Final

# Multipliers to seconds; longest suffix first so "ms" wins over "m"/"s"
DURATION_UNITS: Final[dict[str, float]] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*(ns|us|µs|ms|s|m|h)\s*$")
_NUMBER_RE = re.compile(r"^\s*[-+]?[0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?\s*$")


def is_number(raw: str) -> bool:
    return bool(_NUMBER_RE.match(raw))


def is_duration(raw: str) -> bool:
    return bool(_DURATION_RE.match(raw))


def parse_duration(raw: str) -> float:
    """
    Parse a duration string such as ``250ms``, ``1.5s`` or ``2m`` into seconds.

    Raises:
        ValueError: if ``raw`` is not a duration
    """
    match = _DURATION_RE.match(raw)
    if not match:
        raise ValueError(f"not a duration: {raw!r}")
    value, unit = match.groups()
    return float(value) * DURATION_UNITS[unit]


def parse_seconds(raw: str | int | float) -> float:
    """Accept either a bare number of seconds or a duration string."""
    if isinstance(raw, (int, float)):
        return float(raw)
    if is_number(raw):
        return float(raw)
    return parse_duration(raw)
