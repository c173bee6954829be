"""Closed registry mapping job types to validated handlers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
import json
from typing import Any

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from repoaudit.db import run_session
from repoaudit.errors import NotFoundError, ValidationAppError
from repoaudit.logging import get_logger
from repoaudit.models import JobType, Repository, User
from repoaudit.schemas.jobs import ExecutionContext, JobArgs
from repoaudit.workers.persistence import JobDTO

logger = get_logger(__name__)

JobHandler = Callable[[Any, ExecutionContext], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class HandlerSpec:
    handler: JobHandler
    args_model: type[JobArgs]


@dataclass(slots=True, frozen=True)
class _Owner:
    user_id: int
    access_token: str


@dataclass(slots=True, frozen=True)
class _Target:
    repo_id: int
    owner: str
    name: str


def _format_validation_error(*errors: ValidationError) -> str:
    fields: dict[str, list[str]] = {}
    for error in errors:
        for item in error.errors():
            location = ".".join(str(part) for part in item.get("loc", ())) or "_root"
            fields.setdefault(location, []).append(str(item.get("msg", "invalid value")))
    return f"Invalid args: {json.dumps(fields, sort_keys=True)}"


def _load_owner(session: Session, user_id: int) -> _Owner | None:
    user = session.get(User, user_id)
    if user is None:
        return None
    return _Owner(user_id=int(user.id), access_token=str(user.access_token or ""))


def _load_target(session: Session, repo_id: int) -> _Target | None:
    repo = session.get(Repository, repo_id)
    if repo is None:
        return None
    return _Target(repo_id=int(repo.id), owner=str(repo.owner), name=str(repo.name))


class HandlerRegistry:
    """Resolve, enrich and validate jobs before invoking their handler.

    Construction requires a handler for every :class:`JobType`; a missing
    entry is a programming error and fails immediately.
    """

    def __init__(self, specs: Mapping[JobType | str, HandlerSpec]) -> None:
        resolved = {JobType(key): spec for key, spec in specs.items()}
        missing = [job_type.value for job_type in JobType if job_type not in resolved]
        if missing:
            raise ValueError(f"Missing handlers for job types: {', '.join(sorted(missing))}")
        self._specs = resolved

    def __contains__(self, job_type: object) -> bool:
        try:
            return JobType(job_type) in self._specs
        except ValueError:
            return False

    def spec_for(self, job_type: JobType | str) -> HandlerSpec:
        return self._specs[JobType(job_type)]

    async def enrich(self, job: JobDTO) -> tuple[BaseModel, ExecutionContext]:
        """Load owner and target rows, then validate args and context.

        Raises :class:`NotFoundError` when either row is missing and
        :class:`ValidationAppError` when args or context are invalid.
        """

        owner = await run_session(lambda session: _load_owner(session, job.user_id))
        if owner is None:
            raise NotFoundError(f"User not found for job {job.job_id}")
        target = await run_session(lambda session: _load_target(session, job.repo_id))
        if target is None:
            raise NotFoundError(f"Repository not found for job {job.job_id}")

        spec = self.spec_for(job.type)
        failures: list[ValidationError] = []
        args: BaseModel | None = None
        context: ExecutionContext | None = None
        try:
            args = spec.args_model.model_validate(dict(job.args))
        except ValidationError as exc:
            failures.append(exc)
        try:
            context = ExecutionContext(
                job_id=job.job_id,
                repo_id=target.repo_id,
                user_id=owner.user_id,
                access_token=owner.access_token,
                owner=target.owner,
                repo_name=target.name,
            )
        except ValidationError as exc:
            failures.append(exc)
        if failures:
            raise ValidationAppError(_format_validation_error(*failures))
        assert args is not None and context is not None
        return args, context

    async def run(self, job: JobDTO) -> None:
        """Enrich ``job`` and await its handler; any exception is a failure."""

        args, context = await self.enrich(job)
        logger.debug(
            "Running %s for %s",
            job.type.value,
            context.full_name,
            extra={"event": "orchestrator.handler", "entity_id": job.job_id},
        )
        await self.spec_for(job.type).handler(args, context)


__all__ = ["HandlerRegistry", "HandlerSpec", "JobHandler"]
