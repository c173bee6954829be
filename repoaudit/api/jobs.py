"""Jobs API: queue repository syncs and refreshes, report their status."""

from __future__ import annotations

from time import perf_counter
from typing import Any

from fastapi import APIRouter, Depends, Request, status

from repoaudit.db import run_session
from repoaudit.dependencies import get_coordinator
from repoaudit.errors import NotFoundError
from repoaudit.logging import get_logger
from repoaudit.logging_events import log_event
from repoaudit.models import JobType, Repository, User
from repoaudit.orchestrator.coordinator import JobCoordinator
from repoaudit.schemas.jobs import (
    FetchRequest,
    FetchResponse,
    QueueStatusResponse,
    RefreshRequest,
    RefreshResponse,
    TargetStatusResponse,
)

router = APIRouter(tags=["Jobs"])
_logger = get_logger(__name__)


def _emit_api_event(
    request: Request,
    *,
    status_code: int,
    duration_ms: float,
    meta: dict[str, Any] | None = None,
) -> None:
    payload: dict[str, Any] = {
        "component": "api.jobs",
        "status": "ok" if status_code < 400 else "error",
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 3),
    }
    if meta:
        payload["meta"] = meta
    log_event(_logger, "api.request", **payload)


async def _ensure_owner_and_target(repo_id: int, user_id: int) -> None:
    def _query(session) -> tuple[bool, bool]:  # noqa: ANN001
        return (
            session.get(Repository, repo_id) is not None,
            session.get(User, user_id) is not None,
        )

    repo_exists, user_exists = await run_session(_query)
    if not repo_exists:
        raise NotFoundError(f"Repository {repo_id} not found.")
    if not user_exists:
        raise NotFoundError(f"User {user_id} not found.")


@router.post(
    "/repos/{repo_id}/fetch",
    response_model=FetchResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def fetch_repository(
    repo_id: int,
    payload: FetchRequest,
    request: Request,
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> FetchResponse:
    started = perf_counter()
    await _ensure_owner_and_target(repo_id, payload.user_id)
    queued: dict[str, bool] = {}
    for job_type in (JobType.ISSUE_FETCH, JobType.PR_FETCH):
        queued[job_type.value] = await coordinator.enqueue(
            job_type, repo_id, payload.user_id, {}, payload.priority
        )
    _emit_api_event(
        request,
        status_code=status.HTTP_202_ACCEPTED,
        duration_ms=(perf_counter() - started) * 1000,
        meta={"queued": queued},
    )
    return FetchResponse(repo_id=repo_id, queued=queued)


async def _refresh(
    request: Request,
    coordinator: JobCoordinator,
    *,
    repo_id: int,
    payload: RefreshRequest,
    job_type: JobType,
    args: dict[str, int],
) -> RefreshResponse:
    started = perf_counter()
    await _ensure_owner_and_target(repo_id, payload.user_id)
    queued = await coordinator.enqueue(job_type, repo_id, payload.user_id, args, payload.priority)
    _emit_api_event(
        request,
        status_code=status.HTTP_202_ACCEPTED,
        duration_ms=(perf_counter() - started) * 1000,
        meta={"job_type": job_type.value, "queued": queued},
    )
    return RefreshResponse(repo_id=repo_id, job_type=job_type, queued=queued)


@router.post(
    "/repos/{repo_id}/issues/{number}/refresh",
    response_model=RefreshResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def refresh_issue(
    repo_id: int,
    number: int,
    payload: RefreshRequest,
    request: Request,
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> RefreshResponse:
    return await _refresh(
        request,
        coordinator,
        repo_id=repo_id,
        payload=payload,
        job_type=JobType.SINGLE_ISSUE_REFRESH,
        args={"issue_number": number},
    )


@router.post(
    "/repos/{repo_id}/pulls/{number}/refresh",
    response_model=RefreshResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def refresh_pull_request(
    repo_id: int,
    number: int,
    payload: RefreshRequest,
    request: Request,
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> RefreshResponse:
    return await _refresh(
        request,
        coordinator,
        repo_id=repo_id,
        payload=payload,
        job_type=JobType.SINGLE_PR_REFRESH,
        args={"pr_number": number},
    )


@router.get("/repos/{repo_id}/status", response_model=TargetStatusResponse)
async def repository_status(
    repo_id: int,
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> TargetStatusResponse:
    target = await coordinator.get_status(repo_id)
    return TargetStatusResponse(
        repo_id=repo_id,
        status=target.status,
        current_job_type=target.current_job_type,
    )


@router.get("/jobs/queue", response_model=QueueStatusResponse)
async def queue_status(
    coordinator: JobCoordinator = Depends(get_coordinator),
) -> QueueStatusResponse:
    return QueueStatusResponse(**await coordinator.queue_status())


__all__ = ["router"]
