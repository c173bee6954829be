"""Database models for repoaudit."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from repoaudit.db import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp for ORM defaults."""

    return datetime.now(UTC)


class JobType(str, Enum):
    """Closed set of background job kinds."""

    ISSUE_FETCH = "issue-fetch"
    PR_FETCH = "pr-fetch"
    SENTIMENT = "sentiment"
    SINGLE_ISSUE_REFRESH = "single-issue-refresh"
    SINGLE_PR_REFRESH = "single-pr-refresh"


class JobStatus(str, Enum):
    """Lifecycle states of a persisted job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
FINISHED_JOB_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class FetchStatus(str, Enum):
    """Coarse per-repository sync status shown to polling clients."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    github_id = Column(Integer, unique=True, nullable=False)
    username = Column(String(255), nullable=False)
    access_token = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Repository(Base):
    __tablename__ = "repositories"
    __table_args__ = (UniqueConstraint("owner", "name", name="uq_repositories_owner_name"),)

    id = Column(Integer, primary_key=True, index=True)
    owner = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    github_id = Column(Integer, nullable=True)
    fetch_status = Column(
        String(32),
        nullable=False,
        default=FetchStatus.NOT_STARTED.value,
    )
    last_fetched = Column(DateTime(timezone=True), nullable=True)
    last_pr_fetched = Column(DateTime(timezone=True), nullable=True)
    needs_full_refetch = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Issue(Base):
    __tablename__ = "issues"
    __table_args__ = (
        Index("ix_issues_repo_state", "repo_id", "state"),
        Index("ix_issues_updated_at", "updated_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    repo_id = Column(
        Integer,
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
    )
    github_id = Column(Integer, unique=True, nullable=False)
    number = Column(Integer, nullable=False)
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=True)
    state = Column(String(32), nullable=False)
    author = Column(String(255), nullable=True)
    labels = Column(JSON, nullable=False, default=list)
    assignees = Column(JSON, nullable=False, default=list)
    milestone = Column(String(512), nullable=True)
    issue_type = Column(String(128), nullable=True)
    comments_count = Column(Integer, nullable=False, default=0)
    last_comment_at = Column(DateTime(timezone=True), nullable=True)
    last_comment_author = Column(String(255), nullable=True)
    reactions_count = Column(Integer, nullable=False, default=0)
    comments_fetched = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)


class IssueComment(Base):
    __tablename__ = "issue_comments"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(
        Integer,
        ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    github_comment_id = Column(Integer, unique=True, nullable=False)
    author = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class PullRequest(Base):
    __tablename__ = "pull_requests"
    __table_args__ = (Index("ix_pull_requests_repo_state", "repo_id", "state"),)

    id = Column(Integer, primary_key=True, index=True)
    repo_id = Column(
        Integer,
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
    )
    github_id = Column(Integer, unique=True, nullable=False)
    number = Column(Integer, nullable=False)
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=True)
    state = Column(String(32), nullable=False)
    is_draft = Column(Boolean, nullable=False, default=False)
    author = Column(String(255), nullable=True)
    labels = Column(JSON, nullable=False, default=list)
    assignees = Column(JSON, nullable=False, default=list)
    reviewers = Column(JSON, nullable=False, default=list)
    review_decision = Column(String(64), nullable=True)
    additions = Column(Integer, nullable=False, default=0)
    deletions = Column(Integer, nullable=False, default=0)
    changed_files = Column(Integer, nullable=False, default=0)
    head_ref = Column(String(255), nullable=True)
    base_ref = Column(String(255), nullable=True)
    comments_count = Column(Integer, nullable=False, default=0)
    last_comment_at = Column(DateTime(timezone=True), nullable=True)
    last_comment_author = Column(String(255), nullable=True)
    comments_fetched = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    merged_at = Column(DateTime(timezone=True), nullable=True)


class PullRequestComment(Base):
    __tablename__ = "pull_request_comments"

    id = Column(Integer, primary_key=True, index=True)
    pull_request_id = Column(
        Integer,
        ForeignKey("pull_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    github_comment_id = Column(Integer, unique=True, nullable=False)
    author = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class IssueAnalysis(Base):
    __tablename__ = "issue_analysis"
    __table_args__ = (
        UniqueConstraint("issue_id", "analysis_type", name="uq_issue_analysis_issue_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(
        Integer,
        ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
    )
    analysis_type = Column(String(64), nullable=False)
    score = Column(Float, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    analyzed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','completed','failed')",
            name="ck_jobs_status_valid",
        ),
        Index("ix_jobs_status_priority_created", "status", "priority", "created_at"),
        Index("ix_jobs_repo_status", "repo_id", "status"),
        # At most one unresolved job per (type, repo, args).
        Index(
            "ux_jobs_active_dedupe_key",
            "dedupe_key",
            unique=True,
            sqlite_where=text("status IN ('pending','processing')"),
            postgresql_where=text("status IN ('pending','processing')"),
        ),
    )

    job_id = Column(String(32), primary_key=True)
    type = Column(String(64), nullable=False)
    # No foreign keys: a job may outlive its repository or user, and
    # enrichment reports the missing row as the job's failure.
    repo_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False)
    args = Column(Text, nullable=False, default="{}")
    dedupe_key = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value)
    priority = Column(Integer, nullable=False, default=50)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)


__all__ = [
    "ACTIVE_JOB_STATUSES",
    "FINISHED_JOB_STATUSES",
    "FetchStatus",
    "Issue",
    "IssueAnalysis",
    "IssueComment",
    "Job",
    "JobStatus",
    "JobType",
    "PullRequest",
    "PullRequestComment",
    "Repository",
    "User",
]
