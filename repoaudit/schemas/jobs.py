"""Pydantic schemas for background job arguments and the jobs API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

from repoaudit.models import FetchStatus, JobType


class JobArgs(BaseModel):
    """Base for stored job arguments; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class IssueFetchArgs(JobArgs):
    pass


class PullRequestFetchArgs(JobArgs):
    pass


class SentimentArgs(JobArgs):
    pass


class SingleIssueRefreshArgs(JobArgs):
    issue_number: PositiveInt


class SinglePullRequestRefreshArgs(JobArgs):
    pr_number: PositiveInt


class ExecutionContext(BaseModel):
    """Facts resolved from the database before a handler runs."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: str = Field(..., min_length=1)
    repo_id: PositiveInt
    user_id: PositiveInt
    access_token: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)
    repo_name: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo_name}"


class FetchRequest(BaseModel):
    user_id: PositiveInt = Field(..., description="Owner of the access token used for the sync")
    priority: int | None = Field(
        default=None,
        description="Scheduling priority (lower runs first); defaults to the queue default",
    )


class RefreshRequest(BaseModel):
    user_id: PositiveInt
    priority: int | None = None


class FetchResponse(BaseModel):
    ok: bool = True
    repo_id: int
    queued: dict[str, bool]

    @field_validator("queued")
    @classmethod
    def _validate_job_types(cls, value: dict[str, bool]) -> dict[str, bool]:
        for key in value:
            JobType(key)
        return value


class RefreshResponse(BaseModel):
    ok: bool = True
    repo_id: int
    job_type: JobType
    queued: bool


class TargetStatusResponse(BaseModel):
    repo_id: int
    status: FetchStatus
    current_job_type: JobType | None = None


class QueueStatusResponse(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    max_concurrent: int


__all__ = [
    "ExecutionContext",
    "FetchRequest",
    "FetchResponse",
    "IssueFetchArgs",
    "JobArgs",
    "PullRequestFetchArgs",
    "QueueStatusResponse",
    "RefreshRequest",
    "RefreshResponse",
    "SentimentArgs",
    "SingleIssueRefreshArgs",
    "SinglePullRequestRefreshArgs",
    "TargetStatusResponse",
]
