"""Structured log events shared by repoaudit components."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

_FLAT_TYPES = (str, int, float, bool, type(None))


def _check_flat(name: str, value: Any) -> None:
    if not isinstance(value, _FLAT_TYPES):
        raise TypeError(f"Field '{name}' must be a flat JSON-compatible value")


def _check_meta(value: Any, *, path: str) -> None:
    if isinstance(value, _FLAT_TYPES):
        return
    if isinstance(value, Mapping):
        for key, nested in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Keys in '{path}' must be strings")
            _check_meta(nested, path=f"{path}.{key}")
        return
    if isinstance(value, (list, tuple)):
        for index, nested in enumerate(value):
            _check_meta(nested, path=f"{path}[{index}]")
        return
    raise TypeError(f"Unsupported value in '{path}': {type(value).__name__}")


def log_event(
    logger: Any,
    event: str,
    /,
    *,
    level: int = logging.INFO,
    message: str | None = None,
    **fields: Any,
) -> None:
    """Emit ``event`` with flat ``fields`` attached as ``extra`` attributes.

    A nested ``meta`` mapping is allowed as long as it is JSON-compatible.
    """

    if not isinstance(event, str) or not event.strip():
        raise ValueError("event must be a non-empty string")

    meta = fields.pop("meta", None)
    extra: dict[str, Any] = {"event": event}
    for name, value in fields.items():
        _check_flat(name, value)
        extra[name] = value
    if meta is not None:
        if not isinstance(meta, Mapping):
            raise TypeError("meta must be a mapping if provided")
        _check_meta(dict(meta), path="meta")
        extra["meta"] = dict(meta)

    logger.log(level, message or event, extra=extra)


__all__ = ["log_event"]
