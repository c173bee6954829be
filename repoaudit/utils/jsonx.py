"""Canonical JSON helpers for persisted job arguments."""

from __future__ import annotations

from collections.abc import Mapping
import json
from typing import Any

__all__ = ["canonical_dumps", "loads_mapping"]


def _default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    return str(value)


def canonical_dumps(obj: Any) -> str:
    """Serialise ``obj`` deterministically so equal payloads compare equal as text."""

    return json.dumps(
        obj,
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
        default=_default,
    )


def loads_mapping(data: str | bytes | None) -> dict[str, Any]:
    """Parse stored args, treating blank input as an empty mapping."""

    if data is None:
        return {}
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    if not data.strip():
        return {}
    parsed = json.loads(data)
    if not isinstance(parsed, Mapping):
        raise ValueError("stored job args must be a JSON object")
    return dict(parsed)
