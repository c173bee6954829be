"""Database access helpers for the GitHub sync handlers.

Handlers run on the event loop while SQLAlchemy stays synchronous, so the
DAO exposes plain synchronous primitives and the handlers wrap them in
``asyncio.to_thread``. Each call owns one transaction; a page of issues is
committed as a unit.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, or_, select

from repoaudit.db import session_scope
from repoaudit.models import (
    Issue,
    IssueAnalysis,
    IssueComment,
    PullRequest,
    PullRequestComment,
    Repository,
)
from repoaudit.services.sentiment import CommentSnapshot, IssueSnapshot
from repoaudit.utils.time import ensure_utc, now_utc, parse_github_datetime

GHOST_LOGIN = "ghost"


@dataclass(slots=True, frozen=True)
class RepoSyncState:
    repo_id: int
    last_fetched: datetime | None
    last_pr_fetched: datetime | None
    needs_full_refetch: bool


@dataclass(slots=True, frozen=True)
class UpsertOutcome:
    """Result of storing one issue or pull request node."""

    local_id: int
    number: int
    created: bool
    updated: bool
    needs_comments: bool
    comments_count: int = 0


def _login(node: Mapping[str, Any] | None) -> str | None:
    if not isinstance(node, Mapping):
        return None
    value = node.get("login")
    return str(value) if value else None


def _names(connection: Mapping[str, Any] | None, key: str) -> list[str]:
    if not isinstance(connection, Mapping):
        return []
    return [str(item[key]) for item in connection.get("nodes") or [] if item and item.get(key)]


def _last_comment(node: Mapping[str, Any]) -> tuple[int, datetime | None, str | None]:
    comments = node.get("comments") or {}
    total = int(comments.get("totalCount") or 0)
    nodes = [item for item in comments.get("nodes") or [] if item]
    if not nodes:
        return total, None, None
    last = nodes[-1]
    return total, parse_github_datetime(last.get("createdAt")), _login(last.get("author"))


def _require_datetime(node: Mapping[str, Any], key: str) -> datetime:
    value = parse_github_datetime(node.get(key))
    if value is None:
        raise ValueError(f"GitHub node is missing '{key}'")
    return value


def issue_values(node: Mapping[str, Any]) -> dict[str, Any]:
    """Map a GitHub issue node onto :class:`Issue` column values."""

    comments_count, last_comment_at, last_comment_author = _last_comment(node)
    milestone = node.get("milestone") or {}
    issue_type = node.get("issueType") or {}
    reactions = node.get("reactions") or {}
    return {
        "github_id": int(node["databaseId"]),
        "number": int(node["number"]),
        "title": str(node.get("title") or ""),
        "body": node.get("body"),
        "state": str(node.get("state") or "open").lower(),
        "author": _login(node.get("author")),
        "labels": _names(node.get("labels"), "name"),
        "assignees": _names(node.get("assignees"), "login"),
        "milestone": milestone.get("title"),
        "issue_type": issue_type.get("name"),
        "comments_count": comments_count,
        "last_comment_at": last_comment_at,
        "last_comment_author": last_comment_author,
        "reactions_count": int(reactions.get("totalCount") or 0),
        "created_at": _require_datetime(node, "createdAt"),
        "updated_at": _require_datetime(node, "updatedAt"),
        "closed_at": parse_github_datetime(node.get("closedAt")),
    }


def pull_request_values(node: Mapping[str, Any]) -> dict[str, Any]:
    """Map a GitHub pull request node onto :class:`PullRequest` column values."""

    comments_count, last_comment_at, last_comment_author = _last_comment(node)
    reviewers: list[str] = []
    for request in (node.get("reviewRequests") or {}).get("nodes") or []:
        login = _login((request or {}).get("requestedReviewer"))
        if login:
            reviewers.append(login)
    return {
        "github_id": int(node["databaseId"]),
        "number": int(node["number"]),
        "title": str(node.get("title") or ""),
        "body": node.get("body"),
        "state": str(node.get("state") or "open").lower(),
        "is_draft": bool(node.get("isDraft")),
        "author": _login(node.get("author")),
        "labels": _names(node.get("labels"), "name"),
        "assignees": _names(node.get("assignees"), "login"),
        "reviewers": reviewers,
        "review_decision": node.get("reviewDecision"),
        "additions": int(node.get("additions") or 0),
        "deletions": int(node.get("deletions") or 0),
        "changed_files": int(node.get("changedFiles") or 0),
        "head_ref": node.get("headRefName"),
        "base_ref": node.get("baseRefName"),
        "comments_count": comments_count,
        "last_comment_at": last_comment_at,
        "last_comment_author": last_comment_author,
        "created_at": _require_datetime(node, "createdAt"),
        "updated_at": _require_datetime(node, "updatedAt"),
        "closed_at": parse_github_datetime(node.get("closedAt")),
        "merged_at": parse_github_datetime(node.get("mergedAt")),
    }


def comment_values(node: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "github_comment_id": int(node["databaseId"]),
        "author": _login(node.get("author")) or GHOST_LOGIN,
        "body": node.get("body"),
        "created_at": _require_datetime(node, "createdAt"),
    }


def _upsert_rows(
    session,  # noqa: ANN001
    model: type[Issue] | type[PullRequest],
    repo_id: int,
    rows: Iterable[dict[str, Any]],
) -> list[UpsertOutcome]:
    outcomes: list[UpsertOutcome] = []
    for values in rows:
        record = session.execute(
            select(model).where(model.github_id == values["github_id"])
        ).scalar_one_or_none()
        if record is None:
            record = model(repo_id=repo_id, comments_fetched=False, **values)
            session.add(record)
            session.flush()
            outcomes.append(
                UpsertOutcome(
                    local_id=int(record.id),
                    number=int(record.number),
                    created=True,
                    updated=False,
                    needs_comments=True,
                    comments_count=int(values["comments_count"]),
                )
            )
            continue

        previous = ensure_utc(record.updated_at)
        updated = previous is None or values["updated_at"] > previous
        for key, value in values.items():
            setattr(record, key, value)
        record.repo_id = repo_id
        if updated:
            # Cleared until the comment thread is replaced for this revision.
            record.comments_fetched = False
        session.flush()
        outcomes.append(
            UpsertOutcome(
                local_id=int(record.id),
                number=int(record.number),
                created=False,
                updated=updated,
                needs_comments=updated or not bool(record.comments_fetched),
                comments_count=int(values["comments_count"]),
            )
        )
    return outcomes


def _replace_comments(
    session,  # noqa: ANN001
    parent_model: type[Issue] | type[PullRequest],
    comment_model: type[IssueComment] | type[PullRequestComment],
    parent_column: str,
    parent_id: int,
    comments: Sequence[Mapping[str, Any]],
) -> int:
    session.execute(
        delete(comment_model).where(getattr(comment_model, parent_column) == parent_id)
    )
    stored = 0
    seen: set[int] = set()
    for node in comments:
        values = comment_values(node)
        if values["github_comment_id"] in seen:
            continue
        seen.add(values["github_comment_id"])
        # A comment id is globally unique; drop a stale copy attached elsewhere.
        session.execute(
            delete(comment_model).where(
                comment_model.github_comment_id == values["github_comment_id"]
            )
        )
        session.add(comment_model(**{parent_column: parent_id}, **values))
        stored += 1
    parent = session.get(parent_model, parent_id)
    if parent is not None:
        parent.comments_fetched = True
    return stored


def _to_issue_snapshot(record: Issue) -> IssueSnapshot:
    updated_at = ensure_utc(record.updated_at)
    assert updated_at is not None
    return IssueSnapshot(
        id=int(record.id),
        repo_id=int(record.repo_id),
        number=int(record.number),
        title=str(record.title),
        body=record.body,
        state=str(record.state),
        labels=tuple(record.labels or ()),
        updated_at=updated_at,
    )


class IssueDAO:
    """Synchronous persistence primitives for issues, pull requests and analyses."""

    def get_sync_state(self, repo_id: int) -> RepoSyncState | None:
        with session_scope() as session:
            repo = session.get(Repository, int(repo_id))
            if repo is None:
                return None
            return RepoSyncState(
                repo_id=int(repo.id),
                last_fetched=ensure_utc(repo.last_fetched),
                last_pr_fetched=ensure_utc(repo.last_pr_fetched),
                needs_full_refetch=bool(repo.needs_full_refetch),
            )

    def upsert_issues(self, repo_id: int, nodes: Sequence[Mapping[str, Any]]) -> list[UpsertOutcome]:
        rows = [issue_values(node) for node in nodes]
        with session_scope() as session:
            return _upsert_rows(session, Issue, int(repo_id), rows)

    def upsert_pull_requests(
        self, repo_id: int, nodes: Sequence[Mapping[str, Any]]
    ) -> list[UpsertOutcome]:
        rows = [pull_request_values(node) for node in nodes]
        with session_scope() as session:
            return _upsert_rows(session, PullRequest, int(repo_id), rows)

    def replace_issue_comments(self, issue_id: int, comments: Sequence[Mapping[str, Any]]) -> int:
        with session_scope() as session:
            return _replace_comments(
                session, Issue, IssueComment, "issue_id", int(issue_id), comments
            )

    def replace_pull_request_comments(
        self, pull_request_id: int, comments: Sequence[Mapping[str, Any]]
    ) -> int:
        with session_scope() as session:
            return _replace_comments(
                session,
                PullRequest,
                PullRequestComment,
                "pull_request_id",
                int(pull_request_id),
                comments,
            )

    def advance_issue_watermark(self, repo_id: int, value: datetime) -> None:
        """Move ``last_fetched`` forward to ``value`` (never backwards)."""

        self._advance(repo_id, "last_fetched", value)

    def advance_pr_watermark(self, repo_id: int, value: datetime) -> None:
        self._advance(repo_id, "last_pr_fetched", value)

    def complete_issue_sync(self, repo_id: int, started_at: datetime) -> None:
        """Record a finished issue sync and clear the full refetch flag."""

        with session_scope() as session:
            repo = session.get(Repository, int(repo_id))
            if repo is None:
                return
            repo.last_fetched = started_at
            repo.needs_full_refetch = False

    def complete_pr_sync(self, repo_id: int, started_at: datetime) -> None:
        with session_scope() as session:
            repo = session.get(Repository, int(repo_id))
            if repo is None:
                return
            repo.last_pr_fetched = started_at

    def find_stale_issues(self, repo_id: int, analysis_type: str) -> list[IssueSnapshot]:
        """Issues without an analysis of ``analysis_type`` or updated since it ran."""

        with session_scope() as session:
            statement = (
                select(Issue)
                .outerjoin(
                    IssueAnalysis,
                    and_(
                        IssueAnalysis.issue_id == Issue.id,
                        IssueAnalysis.analysis_type == analysis_type,
                    ),
                )
                .where(
                    Issue.repo_id == int(repo_id),
                    or_(
                        IssueAnalysis.id.is_(None),
                        IssueAnalysis.analyzed_at < Issue.updated_at,
                    ),
                )
                .order_by(Issue.updated_at.asc(), Issue.id.asc())
            )
            return [_to_issue_snapshot(record) for record in session.execute(statement).scalars()]

    def list_issue_comments(self, issue_id: int) -> list[CommentSnapshot]:
        with session_scope() as session:
            records = session.execute(
                select(IssueComment)
                .where(IssueComment.issue_id == int(issue_id))
                .order_by(IssueComment.created_at.asc(), IssueComment.id.asc())
            ).scalars()
            return [
                CommentSnapshot(
                    github_comment_id=int(record.github_comment_id),
                    author=str(record.author),
                    body=record.body,
                    created_at=ensure_utc(record.created_at) or now_utc(),
                )
                for record in records
            ]

    def save_analysis(
        self,
        issue_id: int,
        analysis_type: str,
        score: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        with session_scope() as session:
            record = session.execute(
                select(IssueAnalysis).where(
                    IssueAnalysis.issue_id == int(issue_id),
                    IssueAnalysis.analysis_type == analysis_type,
                )
            ).scalar_one_or_none()
            if record is None:
                record = IssueAnalysis(issue_id=int(issue_id), analysis_type=analysis_type)
                session.add(record)
            record.score = float(score)
            record.metadata_json = dict(metadata or {})
            record.analyzed_at = now_utc()

    def _advance(self, repo_id: int, column: str, value: datetime) -> None:
        with session_scope() as session:
            repo = session.get(Repository, int(repo_id))
            if repo is None:
                return
            current = ensure_utc(getattr(repo, column))
            if current is None or value > current:
                setattr(repo, column, value)


__all__ = [
    "IssueDAO",
    "RepoSyncState",
    "UpsertOutcome",
    "comment_values",
    "issue_values",
    "pull_request_values",
]
