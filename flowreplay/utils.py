"""Utility functions for flowreplay."""

from __future__ import annotations

import re
import copy
from datetime import timedelta
from functools import lru_cache
from typing import Any, Optional


WILDCARD_TOKENS = ("*", "**")


def parse_duration(duration_str: str) -> timedelta:
    """
    Parse a duration string like '250ms', '5s', '1m', '1h', '1d' into a timedelta.

    Args:
        duration_str: Duration string (e.g., '100ms', '5s', '1m', '2h', '1d')

    Returns:
        timedelta object
    """
    if not duration_str:
        return timedelta(0)

    pattern = r'^(\d+(?:\.\d+)?)\s*(ms|[smhd])$'
    match = re.match(pattern, duration_str.strip().lower())

    if not match:
        raise ValueError(f"Invalid duration format: {duration_str}")

    value = float(match.group(1))
    unit = match.group(2)

    if unit == 'ms':
        return timedelta(milliseconds=value)
    elif unit == 's':
        return timedelta(seconds=value)
    elif unit == 'm':
        return timedelta(minutes=value)
    elif unit == 'h':
        return timedelta(hours=value)
    elif unit == 'd':
        return timedelta(days=value)

    raise ValueError(f"Unknown duration unit: {unit}")


def to_seconds(value: Any) -> Optional[float]:
    """
    Convert a suite-file duration to seconds.

    Bare numbers are milliseconds; strings go through parse_duration.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value) / 1000.0
    if isinstance(value, str):
        stripped = value.strip()
        if re.match(r'^\d+(?:\.\d+)?$', stripped):
            return float(stripped) / 1000.0
        return parse_duration(stripped).total_seconds()
    raise ValueError(f"Invalid duration: {value!r}")


def deep_copy(obj: Any) -> Any:
    """Create a deep copy of an object."""
    return copy.deepcopy(obj)


def is_numeric(value: Any) -> bool:
    """Check if a value is numeric (int or float)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_wildcard(value: Any) -> bool:
    """Check if a value is a bare wildcard token."""
    return isinstance(value, str) and value in WILDCARD_TOKENS


def build_path(parent_path: str, key: str | int) -> str:
    """Build a dot/bracket path from parent path and key."""
    if isinstance(key, int):
        return f"{parent_path}[{key}]"
    return f"{parent_path}.{key}"


def get_type_name(value: Any) -> str:
    """Get a friendly type name for a value."""
    if value is None:
        return "null"
    elif isinstance(value, bool):
        return "boolean"
    elif is_numeric(value):
        return "number"
    elif isinstance(value, str):
        return "string"
    elif isinstance(value, list):
        return "array"
    elif isinstance(value, dict):
        return "object"
    else:
        return type(value).__name__


@lru_cache(maxsize=256)
def wildcard_to_regex(pattern: str) -> re.Pattern:
    """
    Compile a glob-style pattern where '*' matches any run of characters.

    Every other character is matched literally and the pattern is anchored
    at both ends.
    """
    parts = [re.escape(part) for part in pattern.split('*')]
    return re.compile('^' + '.*'.join(parts) + '$', re.DOTALL)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile and cache a regex pattern."""
    return re.compile(pattern)


def is_regex_literal(value: Any) -> bool:
    """Check if a string is delimited as a /regular expression/."""
    return isinstance(value, str) and len(value) >= 2 and value.startswith('/') and value.endswith('/')
