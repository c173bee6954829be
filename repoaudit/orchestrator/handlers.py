"""Job handlers driving the GitHub sync client and the issue store."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import time
from typing import Any

from repoaudit.config import GitHubConfig, load_config
from repoaudit.github import queries
from repoaudit.github.client import GitHubClient, GitHubClientError, is_rate_limit_error
from repoaudit.logging import get_logger
from repoaudit.logging_events import log_event
from repoaudit.models import JobType
from repoaudit.orchestrator.registry import HandlerRegistry, HandlerSpec, JobHandler
from repoaudit.schemas.jobs import (
    ExecutionContext,
    IssueFetchArgs,
    PullRequestFetchArgs,
    SentimentArgs,
    SingleIssueRefreshArgs,
    SinglePullRequestRefreshArgs,
)
from repoaudit.services.issue_dao import IssueDAO, UpsertOutcome
from repoaudit.services.sentiment import SENTIMENT_ANALYSIS_TYPE, SentimentAnalyzer
from repoaudit.utils.time import now_utc, parse_github_datetime

logger = get_logger(__name__)

# Overlap applied to incremental watermarks to absorb clock skew.
INCREMENTAL_OVERLAP = timedelta(seconds=60)

EnqueueCallable = Callable[..., Awaitable[bool]]
ClientFactory = Callable[[str], GitHubClient]


def _default_client_factory(config: GitHubConfig) -> ClientFactory:
    def _factory(access_token: str) -> GitHubClient:
        return GitHubClient(access_token, config=config)

    return _factory


@dataclass(slots=True)
class HandlerDeps:
    """Collaborators shared by every job handler."""

    dao: IssueDAO = field(default_factory=IssueDAO)
    config: GitHubConfig = field(default_factory=lambda: load_config().github)
    client_factory: ClientFactory | None = None
    enqueue: EnqueueCallable | None = None
    analyzer: SentimentAnalyzer | None = None

    def client(self, access_token: str) -> GitHubClient:
        factory = self.client_factory or _default_client_factory(self.config)
        return factory(access_token)


@dataclass(slots=True)
class _SyncStats:
    pages: int = 0
    created: int = 0
    updated: int = 0
    comments_fetched: int = 0
    comments_skipped: int = 0

    def record(self, outcomes: Sequence[UpsertOutcome]) -> None:
        self.pages += 1
        self.created += sum(1 for outcome in outcomes if outcome.created)
        self.updated += sum(1 for outcome in outcomes if outcome.updated)


def _newest_updated_at(items: Sequence[Mapping[str, Any]]) -> datetime | None:
    values = [parse_github_datetime(item.get("updatedAt")) for item in items]
    present = [value for value in values if value is not None]
    return max(present) if present else None


def _log_sync(event: str, context: ExecutionContext, *, status: str, **fields: Any) -> None:
    log_event(
        logger,
        event,
        component="orchestrator.handlers",
        entity_id=context.job_id,
        repo=context.full_name,
        status=status,
        **fields,
    )


async def _sync_comments(
    deps: HandlerDeps,
    client: GitHubClient,
    context: ExecutionContext,
    outcome: UpsertOutcome,
    *,
    pull_request: bool,
    stats: _SyncStats,
) -> None:
    if outcome.comments_count == 0:
        comments: list[dict[str, Any]] = []
    else:
        resource = (
            queries.pull_request_comments(context.owner, context.repo_name, outcome.number)
            if pull_request
            else queries.issue_comments(context.owner, context.repo_name, outcome.number)
        )
        try:
            comments = await client.fetch_all(resource, limit=deps.config.comment_limit)
        except GitHubClientError as exc:
            if is_rate_limit_error(exc):
                raise
            stats.comments_skipped += 1
            logger.warning(
                "Skipping comments for %s#%s: %s",
                context.full_name,
                outcome.number,
                exc,
                extra={"event": "orchestrator.comments_skipped", "entity_id": context.job_id},
            )
            return
    replace = (
        deps.dao.replace_pull_request_comments if pull_request else deps.dao.replace_issue_comments
    )
    await asyncio.to_thread(replace, outcome.local_id, comments)
    stats.comments_fetched += 1


async def handle_issue_fetch(
    args: IssueFetchArgs,
    context: ExecutionContext,
    deps: HandlerDeps,
) -> None:
    """Sync a repository's issues, resuming from the last watermark.

    A full sync lists open issues and runs when the repository was never
    fetched or is flagged for a full refetch. Otherwise only issues updated
    since ``last_fetched`` (minus a small overlap) are listed, including
    closed ones.
    """

    started_at = now_utc()
    started = time.perf_counter()
    state = await asyncio.to_thread(deps.dao.get_sync_state, context.repo_id)
    full_sync = state is None or state.needs_full_refetch or state.last_fetched is None
    since = None if full_sync else state.last_fetched - INCREMENTAL_OVERLAP
    _log_sync(
        "orchestrator.issue_fetch",
        context,
        status="started",
        mode="full" if full_sync else "incremental",
        since=since.isoformat() if since else None,
    )

    client = deps.client(context.access_token)
    resource = queries.repository_issues(context.owner, context.repo_name)
    stats = _SyncStats()
    async for page in client.iter_pages(resource, page_size=deps.config.page_size, since=since):
        outcomes = await asyncio.to_thread(deps.dao.upsert_issues, context.repo_id, page.items)
        stats.record(outcomes)
        for outcome in outcomes:
            if outcome.needs_comments:
                await _sync_comments(
                    deps, client, context, outcome, pull_request=False, stats=stats
                )
        if not full_sync:
            newest = _newest_updated_at(page.items)
            if newest is not None:
                await asyncio.to_thread(
                    deps.dao.advance_issue_watermark, context.repo_id, newest
                )

    await asyncio.to_thread(deps.dao.complete_issue_sync, context.repo_id, started_at)
    _log_sync(
        "orchestrator.issue_fetch",
        context,
        status="completed",
        pages=stats.pages,
        created=stats.created,
        updated=stats.updated,
        comments_fetched=stats.comments_fetched,
        comments_skipped=stats.comments_skipped,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )

    if deps.analyzer is not None and deps.enqueue is not None:
        await deps.enqueue(JobType.SENTIMENT, context.repo_id, context.user_id, {})


async def handle_pr_fetch(
    args: PullRequestFetchArgs,
    context: ExecutionContext,
    deps: HandlerDeps,
) -> None:
    """Sync a repository's pull requests from ``last_pr_fetched``.

    Incremental syncs page a search ordered by update time. A search stops
    after ``SEARCH_RESULT_LIMIT`` results, so a capped run searches again
    from the newest pull request it stored.
    """

    started_at = now_utc()
    started = time.perf_counter()
    state = await asyncio.to_thread(deps.dao.get_sync_state, context.repo_id)
    last = state.last_pr_fetched if state is not None else None
    since = last - INCREMENTAL_OVERLAP if last is not None else None
    _log_sync(
        "orchestrator.pr_fetch",
        context,
        status="started",
        mode="incremental" if since else "full",
        since=since.isoformat() if since else None,
    )

    client = deps.client(context.access_token)
    resource = queries.repository_pull_requests(context.owner, context.repo_name)
    stats = _SyncStats()
    window = since
    while True:
        listed = 0
        newest: datetime | None = None
        async for page in client.iter_pages(
            resource, page_size=deps.config.page_size, since=window
        ):
            outcomes = await asyncio.to_thread(
                deps.dao.upsert_pull_requests, context.repo_id, page.items
            )
            stats.record(outcomes)
            listed += len(page.items)
            for outcome in outcomes:
                if outcome.needs_comments:
                    await _sync_comments(
                        deps, client, context, outcome, pull_request=True, stats=stats
                    )
            if window is not None:
                page_newest = _newest_updated_at(page.items)
                if page_newest is not None:
                    newest = page_newest if newest is None else max(newest, page_newest)
                    await asyncio.to_thread(
                        deps.dao.advance_pr_watermark, context.repo_id, page_newest
                    )
        if (
            window is None
            or listed < queries.SEARCH_RESULT_LIMIT
            or newest is None
            or newest <= window
        ):
            break
        window = newest

    await asyncio.to_thread(deps.dao.complete_pr_sync, context.repo_id, started_at)
    _log_sync(
        "orchestrator.pr_fetch",
        context,
        status="completed",
        pages=stats.pages,
        created=stats.created,
        updated=stats.updated,
        comments_fetched=stats.comments_fetched,
        comments_skipped=stats.comments_skipped,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )


async def handle_sentiment(
    args: SentimentArgs,
    context: ExecutionContext,
    deps: HandlerDeps,
) -> None:
    """Score issues whose sentiment analysis is missing or outdated."""

    analyzer = deps.analyzer
    if analyzer is None:
        _log_sync("orchestrator.sentiment", context, status="skipped", reason="no_analyzer")
        return

    stale = await asyncio.to_thread(
        deps.dao.find_stale_issues, context.repo_id, SENTIMENT_ANALYSIS_TYPE
    )
    analyzed = 0
    failed = 0
    for issue in stale:
        try:
            comments = await asyncio.to_thread(deps.dao.list_issue_comments, issue.id)
            result = await analyzer.analyze(issue, comments)
            await asyncio.to_thread(
                deps.dao.save_analysis,
                issue.id,
                SENTIMENT_ANALYSIS_TYPE,
                result.score,
                result.metadata,
            )
        except Exception:
            failed += 1
            logger.exception(
                "Sentiment analysis failed for %s#%s",
                context.full_name,
                issue.number,
                extra={"event": "orchestrator.sentiment_error", "entity_id": context.job_id},
            )
            continue
        analyzed += 1
    _log_sync(
        "orchestrator.sentiment",
        context,
        status="completed",
        candidates=len(stale),
        analyzed=analyzed,
        failed=failed,
    )


async def handle_single_issue_refresh(
    args: SingleIssueRefreshArgs,
    context: ExecutionContext,
    deps: HandlerDeps,
) -> None:
    client = deps.client(context.access_token)
    node = await client.fetch_issue(context.owner, context.repo_name, args.issue_number)
    outcomes = await asyncio.to_thread(deps.dao.upsert_issues, context.repo_id, [node])
    comments = await client.fetch_all(
        queries.issue_comments(context.owner, context.repo_name, args.issue_number),
        limit=deps.config.comment_limit,
    )
    stored = await asyncio.to_thread(
        deps.dao.replace_issue_comments, outcomes[0].local_id, comments
    )
    _log_sync(
        "orchestrator.refresh",
        context,
        status="completed",
        kind="issue",
        number=args.issue_number,
        comments=stored,
    )


async def handle_single_pr_refresh(
    args: SinglePullRequestRefreshArgs,
    context: ExecutionContext,
    deps: HandlerDeps,
) -> None:
    client = deps.client(context.access_token)
    node = await client.fetch_pull_request(context.owner, context.repo_name, args.pr_number)
    outcomes = await asyncio.to_thread(deps.dao.upsert_pull_requests, context.repo_id, [node])
    comments = await client.fetch_all(
        queries.pull_request_comments(context.owner, context.repo_name, args.pr_number),
        limit=deps.config.comment_limit,
    )
    stored = await asyncio.to_thread(
        deps.dao.replace_pull_request_comments, outcomes[0].local_id, comments
    )
    _log_sync(
        "orchestrator.refresh",
        context,
        status="completed",
        kind="pull_request",
        number=args.pr_number,
        comments=stored,
    )


def _bind(handler: Callable[..., Awaitable[None]], deps: HandlerDeps) -> JobHandler:
    async def _run(args: Any, context: ExecutionContext) -> None:
        await handler(args, context, deps)

    _run.__name__ = handler.__name__
    return _run


def build_issue_fetch_handler(deps: HandlerDeps) -> JobHandler:
    return _bind(handle_issue_fetch, deps)


def build_pr_fetch_handler(deps: HandlerDeps) -> JobHandler:
    return _bind(handle_pr_fetch, deps)


def build_sentiment_handler(deps: HandlerDeps) -> JobHandler:
    return _bind(handle_sentiment, deps)


def build_single_issue_refresh_handler(deps: HandlerDeps) -> JobHandler:
    return _bind(handle_single_issue_refresh, deps)


def build_single_pr_refresh_handler(deps: HandlerDeps) -> JobHandler:
    return _bind(handle_single_pr_refresh, deps)


def build_handler_registry(deps: HandlerDeps) -> HandlerRegistry:
    """Return the registry wiring every job type to its handler."""

    return HandlerRegistry(
        {
            JobType.ISSUE_FETCH: HandlerSpec(build_issue_fetch_handler(deps), IssueFetchArgs),
            JobType.PR_FETCH: HandlerSpec(build_pr_fetch_handler(deps), PullRequestFetchArgs),
            JobType.SENTIMENT: HandlerSpec(build_sentiment_handler(deps), SentimentArgs),
            JobType.SINGLE_ISSUE_REFRESH: HandlerSpec(
                build_single_issue_refresh_handler(deps), SingleIssueRefreshArgs
            ),
            JobType.SINGLE_PR_REFRESH: HandlerSpec(
                build_single_pr_refresh_handler(deps), SinglePullRequestRefreshArgs
            ),
        }
    )


__all__ = [
    "HandlerDeps",
    "INCREMENTAL_OVERLAP",
    "build_handler_registry",
    "build_issue_fetch_handler",
    "build_pr_fetch_handler",
    "build_sentiment_handler",
    "build_single_issue_refresh_handler",
    "build_single_pr_refresh_handler",
    "handle_issue_fetch",
    "handle_pr_fetch",
    "handle_sentiment",
    "handle_single_issue_refresh",
    "handle_single_pr_refresh",
]
