"""Job coordinator: admission, bounded dispatch, completion and recovery."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import time
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from repoaudit.config import JobQueueConfig, load_config
from repoaudit.logging import get_logger
from repoaudit.models import FetchStatus, JobStatus, JobType
from repoaudit.orchestrator import events as orchestrator_events
from repoaudit.orchestrator.registry import HandlerRegistry
from repoaudit.orchestrator.status import TargetStatus, TargetStatusTracker
from repoaudit.workers import persistence
from repoaudit.workers.persistence import JobDTO

logger = get_logger(__name__)


def _error_text(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


class JobCoordinator:
    """Persisted FIFO-by-priority queue executed on the running event loop.

    At most ``max_concurrent`` jobs are processing at once and never two for
    the same repository. The dispatch loop is started by :meth:`trigger`;
    triggers that arrive while it runs make it scan again before exiting.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        *,
        status_tracker: TargetStatusTracker | None = None,
        config: JobQueueConfig | None = None,
        persistence_module=persistence,
    ) -> None:
        self._registry = registry
        self._persistence = persistence_module
        self._status = status_tracker or TargetStatusTracker(persistence_module=persistence_module)
        self._config = config or load_config().jobs
        self._max_concurrent = max(1, int(self._config.max_concurrent))
        self._tasks: set[asyncio.Task[None]] = set()
        self._running: set[str] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._loop_active = False
        self._rescan = False
        self._accepting = True

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        return len(self._running)

    @property
    def status_tracker(self) -> TargetStatusTracker:
        return self._status

    async def start(self) -> None:
        """Recover from a previous run and resume any pending work."""

        if not self._config.enabled:
            logger.info(
                "Job coordinator disabled by configuration",
                extra={"event": "orchestrator.disabled"},
            )
            self._accepting = False
            return
        self._accepting = True
        try:
            reset = await self._persistence.reset_processing_jobs_async()
            purged = await self._persistence.purge_finished_jobs_async(
                self._config.retention_days
            )
            pending = await self._persistence.count_pending_async()
        except SQLAlchemyError:
            logger.exception(
                "Job queue recovery failed",
                extra={"event": "orchestrator.recovery_error"},
            )
            return
        orchestrator_events.emit_recovery_event(
            logger, reset=reset, purged=purged, pending=pending
        )
        if pending:
            self.trigger()

    async def enqueue(
        self,
        job_type: JobType | str,
        repo_id: int,
        user_id: int,
        args: Mapping[str, Any] | None = None,
        priority: int | None = None,
    ) -> bool:
        """Persist a job; return ``False`` when an unresolved duplicate exists."""

        resolved = JobType(job_type)
        effective_priority = (
            int(priority) if priority is not None else int(self._config.default_priority)
        )
        job = await self._persistence.enqueue_job_async(
            resolved, repo_id, user_id, args, priority=effective_priority
        )
        orchestrator_events.emit_enqueue_event(
            logger,
            job_type=resolved.value,
            repo_id=int(repo_id),
            status="queued" if job is not None else "deduped",
            priority=effective_priority,
            job_id=job.job_id if job is not None else None,
        )
        if job is None:
            return False
        self.trigger()
        return True

    def trigger(self) -> None:
        """Ensure the dispatch loop runs (or re-scans) on the current loop."""

        if not self._accepting:
            return
        if self._loop_active:
            self._rescan = True
            return
        self._loop_active = True
        self._rescan = False
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run_loop(), name="job-coordinator-dispatch"
        )

    async def queue_status(self) -> dict[str, int]:
        counts = await self._persistence.count_by_status_async()
        summary = {status.value: int(counts.get(status.value, 0)) for status in JobStatus}
        summary["max_concurrent"] = self._max_concurrent
        return summary

    async def get_status(self, repo_id: int) -> TargetStatus:
        return await self._status.get_status(repo_id)

    async def wait_idle(self) -> None:
        """Wait until the dispatch loop and every spawned job have finished."""

        while True:
            pending: list[asyncio.Task[None]] = [task for task in self._tasks if not task.done()]
            if self._loop_task is not None and not self._loop_task.done():
                pending.append(self._loop_task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop dispatching and wait for in-flight jobs to finish."""

        self._accepting = False
        await self.wait_idle()

    async def _run_loop(self) -> None:
        try:
            while True:
                self._rescan = False
                await self._dispatch_available()
                if not self._rescan or not self._accepting:
                    break
        finally:
            self._loop_active = False

    async def _dispatch_available(self) -> None:
        while self._accepting:
            try:
                job = await self._persistence.claim_next_job_async(
                    self._max_concurrent, in_flight=len(self._running)
                )
            except SQLAlchemyError:
                logger.exception(
                    "Failed to claim next job",
                    extra={"event": "orchestrator.claim_error"},
                )
                return
            if job is None:
                return
            self._running.add(job.job_id)
            orchestrator_events.emit_dispatch_event(
                logger,
                job_id=job.job_id,
                job_type=job.type.value,
                repo_id=job.repo_id,
                status="processing",
                in_flight=len(self._running),
            )
            await self._status.set_status(job.repo_id, FetchStatus.IN_PROGRESS)
            task = asyncio.create_task(self._execute(job), name=f"job:{job.job_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _execute(self, job: JobDTO) -> None:
        started = time.perf_counter()
        try:
            try:
                await self._registry.run(job)
            except Exception as exc:
                error = _error_text(exc)
                logger.warning(
                    "Job %s (%s) failed: %s",
                    job.job_id,
                    job.type.value,
                    error,
                    exc_info=not isinstance(exc, (ValueError, LookupError)),
                )
                await self._finish(job, success=False, error=error, started=started)
            else:
                await self._finish(job, success=True, error=None, started=started)
        finally:
            self._running.discard(job.job_id)
            self.trigger()

    async def _finish(
        self,
        job: JobDTO,
        *,
        success: bool,
        error: str | None,
        started: float,
    ) -> None:
        try:
            if success:
                await self._persistence.mark_completed_async(job.job_id)
            else:
                await self._persistence.mark_failed_async(job.job_id, error or "failed")
        except SQLAlchemyError:
            logger.exception(
                "Failed to record job outcome",
                extra={"event": "orchestrator.commit_error", "entity_id": job.job_id},
            )
        await self._status.set_status(
            job.repo_id, FetchStatus.COMPLETED if success else FetchStatus.FAILED
        )
        orchestrator_events.emit_commit_event(
            logger,
            job_id=job.job_id,
            job_type=job.type.value,
            repo_id=job.repo_id,
            status="completed" if success else "failed",
            duration_ms=int((time.perf_counter() - started) * 1000),
            error=error,
        )


__all__ = ["JobCoordinator"]
