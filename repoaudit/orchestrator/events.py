"""Structured logging helpers for orchestrator components."""

from __future__ import annotations

import logging
from typing import Any

from repoaudit.logging_events import log_event


def emit_enqueue_event(
    logger: Any,
    *,
    job_type: str,
    repo_id: int,
    status: str,
    priority: int,
    job_id: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "job_type": job_type,
        "repo_id": repo_id,
        "status": status,
        "priority": priority,
    }
    if job_id is not None:
        payload["entity_id"] = job_id
    _emit_event(logger, "orchestrator.enqueue", payload)


def emit_dispatch_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    repo_id: int,
    status: str,
    in_flight: int | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "repo_id": repo_id,
        "status": status,
    }
    if in_flight is not None:
        payload["in_flight"] = in_flight
    _emit_event(logger, "orchestrator.dispatch", payload)


def emit_commit_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    repo_id: int,
    status: str,
    duration_ms: int,
    error: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "repo_id": repo_id,
        "status": status,
        "duration_ms": duration_ms,
    }
    if error:
        payload["error"] = error
    level = logging.WARNING if status == "failed" else logging.INFO
    _emit_event(logger, "orchestrator.commit", payload, level=level)


def emit_recovery_event(logger: Any, *, reset: int, purged: int, pending: int) -> None:
    _emit_event(
        logger,
        "orchestrator.recovery",
        {"status": "recovered", "reset": reset, "purged": purged, "pending": pending},
    )


def _emit_event(
    logger: Any,
    event: str,
    payload: dict[str, Any],
    *,
    level: int = logging.INFO,
) -> None:
    log_event(logger, event, level=level, component="orchestrator", **payload)


__all__ = [
    "emit_commit_event",
    "emit_dispatch_event",
    "emit_enqueue_event",
    "emit_recovery_event",
]
