"""Per-repository fetch status shown to polling clients."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from repoaudit.db import run_session
from repoaudit.logging import get_logger
from repoaudit.logging_events import log_event
from repoaudit.models import FetchStatus, JobType, Repository
from repoaudit.workers import persistence

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class TargetStatus:
    status: FetchStatus
    current_job_type: JobType | None = None


def _read_status(session, repo_id: int) -> FetchStatus | None:  # noqa: ANN001
    repo = session.get(Repository, repo_id)
    if repo is None:
        return None
    try:
        return FetchStatus(repo.fetch_status)
    except ValueError:
        return FetchStatus.NOT_STARTED


def _write_status(session, repo_id: int, status: FetchStatus) -> int:  # noqa: ANN001
    result = session.execute(
        update(Repository)
        .where(Repository.id == repo_id)
        .values(fetch_status=status.value)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


class TargetStatusTracker:
    """Read and write the coarse status of each repository.

    Writes happen in lockstep with job transitions; a failed write is logged
    and never surfaces to the job that triggered it.
    """

    def __init__(self, *, persistence_module=persistence) -> None:
        self._persistence = persistence_module

    async def get_status(self, repo_id: int) -> TargetStatus:
        status = await run_session(lambda session: _read_status(session, repo_id))
        if status is None:
            return TargetStatus(status=FetchStatus.NOT_STARTED)
        current = await self._persistence.current_job_type_for_repo_async(repo_id)
        return TargetStatus(status=status, current_job_type=current)

    async def set_status(self, repo_id: int, status: FetchStatus) -> bool:
        try:
            updated = await run_session(
                lambda session: _write_status(session, repo_id, status)
            )
        except SQLAlchemyError:
            logger.exception(
                "Failed to update repository status",
                extra={
                    "event": "orchestrator.status_error",
                    "repo_id": repo_id,
                    "status": status.value,
                },
            )
            return False
        if not updated:
            log_event(
                logger,
                "orchestrator.status",
                component="orchestrator.status",
                repo_id=repo_id,
                status="missing",
                message="Repository row not found while updating status",
            )
            return False
        return True


__all__ = ["TargetStatus", "TargetStatusTracker"]
