"""Domain Utilities - Helpers for reading values out of raw JSON payloads.

Payloads from the clinical-data server nest the fields this package needs at
varying depths (``patient.person.preferredName.givenName``). These helpers
walk dotted paths without raising, so deserializers can try several
locations for the same value.
"""

from typing import Any, Optional

_MISSING = object()


def read_path(payload: Any, path: str, default: Any = None) -> Any:
    """Read the value at a dotted path.

    Numeric segments index into lists (``identifiers.0.identifier``).

    Parameters:
        payload: Parsed JSON value (dict or list)
        path: Dotted path
        default: Returned when any segment is missing

    Returns:
        The value at the path, or ``default``
    """
    current = payload
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment, _MISSING)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else _MISSING
        else:
            return default
        if current is _MISSING:
            return default
    return current


def first_of(payload: Any, *paths: str) -> Optional[Any]:
    """Return the first non-empty value among several candidate paths."""
    for path in paths:
        value = read_path(payload, path)
        if value not in (None, ""):
            return value
    return None


def read_string(payload: Any, *paths: str) -> Optional[str]:
    """Like first_of, but only accepts string values."""
    value = first_of(payload, *paths)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected a string at {' | '.join(paths)}, got {type(value).__name__}")
    return value
