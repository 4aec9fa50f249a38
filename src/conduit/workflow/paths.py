"""Dotted/indexed path resolution into context data."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

# "name", "name[0]", "name[0][2]"
_SEGMENT_RE = re.compile(r"^(?P<key>[^\[\]]*)(?P<indexes>(?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")


def resolve_path(data: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path with optional ``[index]`` segments.

    Missing keys, out-of-range indexes and type mismatches resolve to None
    instead of raising.

    Example:
        >>> resolve_path({"research": {"topics": ["ai", "ml"]}}, "research.topics[1]")
        'ml'
        >>> resolve_path({"a": 1}, "a.b") is None
        True
    """
    current: Any = data
    for part in path.split("."):
        if current is None:
            return None

        match = _SEGMENT_RE.match(part)
        if match is None:
            return None

        key = match.group("key")
        if key:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)

        for raw_index in _INDEX_RE.findall(match.group("indexes")):
            if not isinstance(current, Sequence) or isinstance(current, str | bytes):
                return None
            index = int(raw_index)
            if index >= len(current):
                return None
            current = current[index]

    return current
