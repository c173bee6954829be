"""Persistence helpers for the background ``Job`` queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from repoaudit.db import session_scope
from repoaudit.logging import get_logger
from repoaudit.logging_events import log_event
from repoaudit.models import (
    ACTIVE_JOB_STATUSES,
    FINISHED_JOB_STATUSES,
    Job,
    JobStatus,
    JobType,
)
from repoaudit.utils.idempotency import make_dedupe_key
from repoaudit.utils.jsonx import canonical_dumps, loads_mapping
from repoaudit.utils.time import ensure_utc, now_utc

logger = get_logger(__name__)

DEFAULT_PRIORITY = 50


@dataclass(slots=True)
class JobDTO:
    """Detached snapshot of a persisted job."""

    job_id: str
    type: JobType
    repo_id: int
    user_id: int
    args: dict[str, Any]
    status: JobStatus
    priority: int
    dedupe_key: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


def _to_dto(record: Job) -> JobDTO:
    created_at = ensure_utc(record.created_at)
    assert created_at is not None
    return JobDTO(
        job_id=str(record.job_id),
        type=JobType(record.type),
        repo_id=int(record.repo_id),
        user_id=int(record.user_id),
        args=loads_mapping(record.args),
        status=JobStatus(record.status),
        priority=int(record.priority if record.priority is not None else DEFAULT_PRIORITY),
        dedupe_key=str(record.dedupe_key),
        created_at=created_at,
        started_at=ensure_utc(record.started_at),
        completed_at=ensure_utc(record.completed_at),
        error=record.error,
    )


def _emit_worker_job_event(job: JobDTO, status: str, **extra: Any) -> None:
    payload: dict[str, Any] = {
        "component": "jobs.persistence",
        "entity_id": job.job_id,
        "job_type": job.type.value,
        "repo_id": job.repo_id,
        "status": status,
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    log_event(logger, "worker.job", **payload)


def _emit_dedupe_hit(job_type: JobType, repo_id: int, dedupe_key: str, *, source: str) -> None:
    log_event(
        logger,
        "worker.job",
        component="jobs.persistence",
        job_type=job_type.value,
        repo_id=repo_id,
        status="deduped",
        meta={"dedupe_key": dedupe_key, "source": source},
    )


def compute_dedupe_key(job_type: JobType | str, repo_id: int, args: Mapping[str, Any] | None) -> str:
    """Return the content key shared by every submission of the same work."""

    resolved = JobType(job_type)
    return make_dedupe_key(resolved.value, int(repo_id), canonical_dumps(dict(args or {})))


def enqueue_job(
    job_type: JobType | str,
    repo_id: int,
    user_id: int,
    args: Mapping[str, Any] | None = None,
    *,
    priority: int = DEFAULT_PRIORITY,
) -> JobDTO | None:
    """Insert a pending job unless an unresolved duplicate exists.

    Returns ``None`` when the submission was deduplicated. Unknown job
    types raise ``ValueError`` before anything is written.
    """

    resolved = JobType(job_type)
    args_json = canonical_dumps(dict(args or {}))
    dedupe_key = compute_dedupe_key(resolved, repo_id, args)

    try:
        with session_scope() as session:
            existing = session.execute(
                select(Job.job_id)
                .where(
                    Job.dedupe_key == dedupe_key,
                    Job.status.in_(ACTIVE_JOB_STATUSES),
                )
                .limit(1)
            ).scalar_one_or_none()
            if existing is not None:
                _emit_dedupe_hit(resolved, repo_id, dedupe_key, source="lookup")
                return None

            record = Job(
                job_id=uuid4().hex,
                type=resolved.value,
                repo_id=int(repo_id),
                user_id=int(user_id),
                args=args_json,
                dedupe_key=dedupe_key,
                status=JobStatus.PENDING.value,
                priority=int(priority),
                created_at=now_utc(),
            )
            session.add(record)
            session.flush()
            dto = _to_dto(record)
    except IntegrityError:
        # A concurrent submission won the partial unique index.
        _emit_dedupe_hit(resolved, repo_id, dedupe_key, source="constraint")
        return None

    _emit_worker_job_event(dto, "enqueued", priority=dto.priority)
    return dto


def claim_next_job(max_concurrent: int, *, in_flight: int = 0) -> JobDTO | None:
    """Move the next eligible pending job to ``processing``.

    Eligibility: the processing count (the larger of the stored count and
    ``in_flight``) is below ``max_concurrent`` and no other job for the same
    repository is processing. Order is priority ascending, then
    ``created_at`` and ``job_id``.
    """

    with session_scope() as session:
        processing = int(
            session.execute(
                select(func.count())
                .select_from(Job)
                .where(Job.status == JobStatus.PROCESSING.value)
            ).scalar_one()
        )
        if max(processing, in_flight) >= max_concurrent:
            log_event(
                logger,
                "worker.tick",
                level=logging.DEBUG,
                component="jobs.persistence",
                status="at_capacity",
                count=processing,
            )
            return None

        busy_repos = (
            select(Job.repo_id)
            .where(Job.status == JobStatus.PROCESSING.value)
        )
        candidate = (
            session.execute(
                select(Job)
                .where(
                    Job.status == JobStatus.PENDING.value,
                    Job.repo_id.not_in(busy_repos),
                )
                .order_by(Job.priority.asc(), Job.created_at.asc(), Job.job_id.asc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        if candidate is None:
            return None

        started_at = now_utc()
        result = session.execute(
            update(Job)
            .where(
                Job.job_id == candidate.job_id,
                Job.status == JobStatus.PENDING.value,
            )
            .values(status=JobStatus.PROCESSING.value, started_at=started_at)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        session.refresh(candidate)
        dto = _to_dto(candidate)

    _emit_worker_job_event(dto, "processing", priority=dto.priority)
    return dto


def _finish(job_id: str, status: JobStatus, error: str | None) -> JobDTO | None:
    with session_scope() as session:
        result = session.execute(
            update(Job)
            .where(
                Job.job_id == job_id,
                Job.status == JobStatus.PROCESSING.value,
            )
            .values(status=status.value, completed_at=now_utc(), error=error)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        record = session.get(Job, job_id)
        if record is None:
            return None
        return _to_dto(record)


def mark_completed(job_id: str) -> bool:
    """Resolve a processing job as completed."""

    dto = _finish(job_id, JobStatus.COMPLETED, None)
    if dto is None:
        return False
    _emit_worker_job_event(dto, "completed")
    return True


def mark_failed(job_id: str, error: str) -> bool:
    """Resolve a processing job as failed, recording ``error``."""

    dto = _finish(job_id, JobStatus.FAILED, error)
    if dto is None:
        return False
    _emit_worker_job_event(dto, "failed", error=error)
    return True


def reset_processing_jobs() -> int:
    """Return every ``processing`` job to ``pending`` (crash recovery)."""

    with session_scope() as session:
        result = session.execute(
            update(Job)
            .where(Job.status == JobStatus.PROCESSING.value)
            .values(status=JobStatus.PENDING.value, started_at=None)
            .execution_options(synchronize_session=False)
        )
        count = int(result.rowcount or 0)
    if count:
        log_event(
            logger,
            "worker.recovery",
            component="jobs.persistence",
            status="reset",
            count=count,
        )
    return count


def purge_finished_jobs(retention_days: int, *, now: datetime | None = None) -> int:
    """Delete completed/failed jobs whose completion is older than the window."""

    cutoff = (now or now_utc()) - timedelta(days=max(0, int(retention_days)))
    with session_scope() as session:
        result = session.execute(
            delete(Job)
            .where(
                Job.status.in_(FINISHED_JOB_STATUSES),
                Job.completed_at.is_not(None),
                Job.completed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        count = int(result.rowcount or 0)
    if count:
        log_event(
            logger,
            "worker.retention",
            component="jobs.persistence",
            status="purged",
            count=count,
            retention_days=int(retention_days),
        )
    return count


def count_by_status() -> dict[str, int]:
    counts = {status.value: 0 for status in JobStatus}
    with session_scope() as session:
        rows = session.execute(
            select(Job.status, func.count()).group_by(Job.status)
        ).all()
    for status, count in rows:
        counts[str(status)] = int(count)
    return counts


def count_pending() -> int:
    with session_scope() as session:
        return int(
            session.execute(
                select(func.count())
                .select_from(Job)
                .where(Job.status == JobStatus.PENDING.value)
            ).scalar_one()
        )


def current_job_type_for_repo(repo_id: int) -> JobType | None:
    """Return the type of the job currently processing for ``repo_id``."""

    with session_scope() as session:
        value = session.execute(
            select(Job.type)
            .where(
                Job.repo_id == int(repo_id),
                Job.status == JobStatus.PROCESSING.value,
            )
            .order_by(Job.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()
    return JobType(value) if value is not None else None


def get_job(job_id: str) -> JobDTO | None:
    with session_scope() as session:
        record = session.get(Job, job_id)
        if record is None:
            return None
        return _to_dto(record)


def list_jobs(
    *,
    repo_id: int | None = None,
    status: JobStatus | None = None,
) -> list[JobDTO]:
    with session_scope() as session:
        stmt = select(Job).order_by(Job.created_at.asc(), Job.job_id.asc())
        if repo_id is not None:
            stmt = stmt.where(Job.repo_id == int(repo_id))
        if status is not None:
            stmt = stmt.where(Job.status == status.value)
        return [_to_dto(record) for record in session.execute(stmt).scalars()]


async def enqueue_job_async(
    job_type: JobType | str,
    repo_id: int,
    user_id: int,
    args: Mapping[str, Any] | None = None,
    *,
    priority: int = DEFAULT_PRIORITY,
) -> JobDTO | None:
    return await asyncio.to_thread(
        enqueue_job, job_type, repo_id, user_id, args, priority=priority
    )


async def claim_next_job_async(max_concurrent: int, *, in_flight: int = 0) -> JobDTO | None:
    return await asyncio.to_thread(claim_next_job, max_concurrent, in_flight=in_flight)


async def mark_completed_async(job_id: str) -> bool:
    return await asyncio.to_thread(mark_completed, job_id)


async def mark_failed_async(job_id: str, error: str) -> bool:
    return await asyncio.to_thread(mark_failed, job_id, error)


async def reset_processing_jobs_async() -> int:
    return await asyncio.to_thread(reset_processing_jobs)


async def purge_finished_jobs_async(retention_days: int) -> int:
    return await asyncio.to_thread(purge_finished_jobs, retention_days)


async def count_by_status_async() -> dict[str, int]:
    return await asyncio.to_thread(count_by_status)


async def count_pending_async() -> int:
    return await asyncio.to_thread(count_pending)


async def current_job_type_for_repo_async(repo_id: int) -> JobType | None:
    return await asyncio.to_thread(current_job_type_for_repo, repo_id)


__all__ = [
    "DEFAULT_PRIORITY",
    "JobDTO",
    "claim_next_job",
    "claim_next_job_async",
    "compute_dedupe_key",
    "count_by_status",
    "count_by_status_async",
    "count_pending",
    "count_pending_async",
    "current_job_type_for_repo",
    "current_job_type_for_repo_async",
    "enqueue_job",
    "enqueue_job_async",
    "get_job",
    "list_jobs",
    "mark_completed",
    "mark_completed_async",
    "mark_failed",
    "mark_failed_async",
    "purge_finished_jobs",
    "purge_finished_jobs_async",
    "reset_processing_jobs",
    "reset_processing_jobs_async",
]
