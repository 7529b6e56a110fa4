"""
Path lookups on raw notification payloads.

Upstream payloads use TitleCase keys for some notification types and
camelCase keys for others, sometimes within the same message. Every lookup
tries the literal dotted path first, then the same path with the first letter
of each segment lowercased.
"""
from typing import Any, Iterable, Mapping

_MISSING = object()


def lcfirst(segment: str) -> str:
    return segment[:1].lower() + segment[1:]


def _walk(data: Any, segments: Iterable[str]) -> Any:
    current = data
    for segment in segments:
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return _MISSING
    return current


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """
    Resolve ``path`` ("A.B.C") in ``data``.

    A null value at the literal path counts as absent, so the lowercased
    variant is still tried.

    Examples:
        get_path({"Payload": {"SellerId": "S1"}}, "Payload.SellerId") -> "S1"
        get_path({"payload": {"sellerId": "S1"}}, "Payload.SellerId") -> "S1"
    """
    segments = path.split(".")
    value = _walk(data, segments)
    if value is _MISSING or value is None:
        value = _walk(data, [lcfirst(s) for s in segments])
    if value is _MISSING or value is None:
        return default
    return value


def first_path(data: Any, *paths: str, default: Any = None) -> Any:
    """Return the value of the first of ``paths`` that resolves."""
    for path in paths:
        value = get_path(data, path)
        if value is not None:
            return value
    return default


