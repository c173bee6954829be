from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from repoaudit.models import FetchStatus, JobType
from repoaudit.orchestrator import status as status_module
from repoaudit.orchestrator.status import TargetStatus, TargetStatusTracker
from repoaudit.workers import persistence


@pytest.mark.asyncio
async def test_unknown_repository_reports_not_started() -> None:
    tracker = TargetStatusTracker()

    assert await tracker.get_status(12345) == TargetStatus(status=FetchStatus.NOT_STARTED)


@pytest.mark.asyncio
async def test_new_repository_defaults_to_not_started(make_repository) -> None:
    repo_id = make_repository()

    status = await TargetStatusTracker().get_status(repo_id)

    assert status.status is FetchStatus.NOT_STARTED
    assert status.current_job_type is None


@pytest.mark.asyncio
async def test_set_status_and_current_job(make_repository) -> None:
    repo_id = make_repository()
    tracker = TargetStatusTracker()
    persistence.enqueue_job(JobType.SINGLE_PR_REFRESH, repo_id, 1, {"pr_number": 5})
    persistence.claim_next_job(5)

    assert await tracker.set_status(repo_id, FetchStatus.IN_PROGRESS) is True
    status = await tracker.get_status(repo_id)

    assert status.status is FetchStatus.IN_PROGRESS
    assert status.current_job_type is JobType.SINGLE_PR_REFRESH


@pytest.mark.asyncio
async def test_set_status_for_missing_repository_returns_false() -> None:
    assert await TargetStatusTracker().set_status(777, FetchStatus.COMPLETED) is False


@pytest.mark.asyncio
async def test_set_status_swallows_persistence_errors(
    make_repository, monkeypatch: pytest.MonkeyPatch
) -> None:
    repo_id = make_repository()

    async def _broken(func, *, factory=None):  # noqa: ANN001
        raise OperationalError("UPDATE repositories", {}, Exception("disk I/O error"))

    monkeypatch.setattr(status_module, "run_session", _broken)

    assert await TargetStatusTracker().set_status(repo_id, FetchStatus.FAILED) is False
