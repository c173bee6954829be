from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
import json
from typing import Any

import httpx
import pytest
from sqlalchemy import func, select

from repoaudit.config import GitHubConfig
from repoaudit.db import session_scope
from repoaudit.github import queries
from repoaudit.github.client import GitHubClient, GitHubHTTPStatusError, GitHubRateLimitedError
from repoaudit.github.pacing import RequestPacer
from repoaudit.models import Issue, IssueAnalysis, IssueComment, JobType, PullRequest
from repoaudit.orchestrator.handlers import (
    HandlerDeps,
    build_handler_registry,
    handle_issue_fetch,
    handle_pr_fetch,
    handle_sentiment,
    handle_single_issue_refresh,
    handle_single_pr_refresh,
)
from repoaudit.schemas.jobs import (
    ExecutionContext,
    IssueFetchArgs,
    PullRequestFetchArgs,
    SentimentArgs,
    SingleIssueRefreshArgs,
    SinglePullRequestRefreshArgs,
)
from repoaudit.services.issue_dao import IssueDAO
from repoaudit.services.sentiment import CommentSnapshot, IssueSnapshot, SentimentResult
from repoaudit.utils.time import ensure_utc
from repoaudit.workers import persistence

_CONFIG = GitHubConfig(
    graphql_url="https://github.test/graphql",
    min_request_interval_ms=0,
    timeout_ms=1_000,
    page_size=2,
    comment_limit=50,
)

Responder = Callable[[dict[str, Any]], httpx.Response]


class FakeGitHub:
    """Routes listing and comment queries to separate responders."""

    def __init__(self, *, listing: Responder, comments: Responder | None = None) -> None:
        self.listing_requests: list[dict[str, Any]] = []
        self.comment_requests: list[dict[str, Any]] = []
        self._listing = listing
        self._comments = comments or (lambda body: _page(_comment_path(body), []))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if "number" in body["variables"]:
            self.comment_requests.append(body)
            return self._comments(body)
        self.listing_requests.append(body)
        return self._listing(body)

    def client_factory(self, access_token: str) -> GitHubClient:
        return GitHubClient(
            access_token,
            config=_CONFIG,
            pacer=RequestPacer(0),
            transport=httpx.MockTransport(self),
        )


def _comment_path(body: dict[str, Any]) -> tuple[str, ...]:
    parent = "pullRequest" if "pullRequest(number" in body["query"] else "issue"
    return ("repository", parent, "comments")


def _page(
    path: tuple[str, ...],
    nodes: list[dict[str, Any]],
    *,
    cursor: str | None = None,
    more: bool = False,
) -> httpx.Response:
    payload: dict[str, Any] = {
        "pageInfo": {"hasNextPage": more, "endCursor": cursor},
        "nodes": nodes,
    }
    for key in reversed(path):
        payload = {key: payload}
    return httpx.Response(200, json={"data": payload})


def _issue(number: int, *, updated: str = "2024-05-02T08:00:00Z", comments: int = 0) -> dict[str, Any]:
    return {
        "id": f"I_{number}",
        "databaseId": 5_000 + number,
        "number": number,
        "title": f"Issue {number}",
        "body": "Something is broken",
        "state": "OPEN",
        "createdAt": "2024-04-01T00:00:00Z",
        "updatedAt": updated,
        "closedAt": None,
        "author": {"login": "octocat"},
        "issueType": {"name": "Bug"},
        "labels": {"nodes": [{"name": "bug", "color": "d73a4a"}]},
        "comments": {
            "totalCount": comments,
            "nodes": [{"createdAt": "2024-05-01T00:00:00Z", "author": {"login": "hubot"}}]
            if comments
            else [],
        },
        "reactions": {"totalCount": 3},
        "assignees": {"nodes": [{"login": "monalisa"}]},
        "milestone": None,
    }


def _pull_request(number: int, *, updated: str = "2024-05-02T08:00:00Z") -> dict[str, Any]:
    return {
        "id": f"PR_{number}",
        "databaseId": 9_000 + number,
        "number": number,
        "title": f"PR {number}",
        "body": None,
        "state": "OPEN",
        "isDraft": False,
        "createdAt": "2024-04-01T00:00:00Z",
        "updatedAt": updated,
        "closedAt": None,
        "mergedAt": None,
        "author": {"login": "octocat"},
        "labels": {"nodes": []},
        "comments": {"totalCount": 0, "nodes": []},
        "assignees": {"nodes": []},
        "reviewRequests": {"nodes": [{"requestedReviewer": {"login": "hubot"}}]},
        "reviewDecision": "REVIEW_REQUIRED",
        "additions": 10,
        "deletions": 2,
        "changedFiles": 1,
        "headRefName": "feature",
        "baseRefName": "main",
    }


def _comment(comment_id: int, *, author: str | None = "hubot") -> dict[str, Any]:
    return {
        "databaseId": comment_id,
        "body": f"comment {comment_id}",
        "createdAt": "2024-05-01T10:00:00Z",
        "author": {"login": author} if author else None,
    }


def _context(user_id: int, repo_id: int, *, name: str = "demo") -> ExecutionContext:
    return ExecutionContext(
        job_id="job-1",
        repo_id=repo_id,
        user_id=user_id,
        access_token="gho_test",
        owner="octo",
        repo_name=name,
    )


def _deps(github: FakeGitHub, **overrides: Any) -> HandlerDeps:
    return HandlerDeps(
        dao=IssueDAO(),
        config=_CONFIG,
        client_factory=github.client_factory,
        **overrides,
    )


def _issue_numbers() -> list[int]:
    with session_scope() as session:
        return list(session.execute(select(Issue.number).order_by(Issue.number)).scalars())


def _comment_ids(issue_number: int) -> list[int]:
    with session_scope() as session:
        statement = (
            select(IssueComment.github_comment_id)
            .join(Issue, Issue.id == IssueComment.issue_id)
            .where(Issue.number == issue_number)
            .order_by(IssueComment.github_comment_id)
        )
        return list(session.execute(statement).scalars())


@pytest.mark.asyncio
async def test_full_issue_sync_stores_issues_and_comments(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository(needs_full_refetch=True)
    before = datetime.now(UTC)

    def _listing(body: dict[str, Any]) -> httpx.Response:
        if body["variables"]["after"] is None:
            return _page(
                ("repository", "issues"),
                [_issue(1, comments=2), _issue(2)],
                cursor="p1",
                more=True,
            )
        return _page(("repository", "issues"), [_issue(3, comments=1)])

    def _comments(body: dict[str, Any]) -> httpx.Response:
        number = body["variables"]["number"]
        nodes = [_comment(11), _comment(12, author=None)] if number == 1 else [_comment(31)]
        return _page(_comment_path(body), nodes)

    github = FakeGitHub(listing=_listing, comments=_comments)

    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), _deps(github))

    assert len(github.listing_requests) == 2
    first_listing = github.listing_requests[0]
    assert "since" not in first_listing["variables"]
    assert first_listing["variables"]["states"] == ["OPEN"]
    assert first_listing["variables"]["first"] == 2
    assert [request["variables"]["number"] for request in github.comment_requests] == [1, 3]

    assert _issue_numbers() == [1, 2, 3]
    assert _comment_ids(1) == [11, 12]
    assert _comment_ids(3) == [31]
    with session_scope() as session:
        ghost = session.execute(
            select(IssueComment.author).where(IssueComment.github_comment_id == 12)
        ).scalar_one()
        issue = session.execute(select(Issue).where(Issue.number == 1)).scalar_one()
        assert issue.labels == ["bug"]
        assert issue.assignees == ["monalisa"]
        assert issue.issue_type == "Bug"
        assert issue.last_comment_author == "hubot"
        assert issue.comments_fetched is True
        untouched = session.execute(select(Issue).where(Issue.number == 2)).scalar_one()
        assert untouched.comments_fetched is True
    assert ghost == "ghost"

    state = IssueDAO().get_sync_state(repo_id)
    assert state is not None
    assert state.needs_full_refetch is False
    assert state.last_fetched is not None and state.last_fetched >= before.replace(microsecond=0)


@pytest.mark.asyncio
async def test_incremental_issue_sync_uses_watermark_with_overlap(
    make_user, make_repository
) -> None:
    user_id = make_user()
    watermark = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    repo_id = make_repository(last_fetched=watermark)
    github = FakeGitHub(listing=lambda body: _page(("repository", "issues"), [_issue(4)]))

    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), _deps(github))

    [request] = github.listing_requests
    assert request["variables"]["since"] == "2024-05-01T11:59:00Z"
    assert request["variables"]["states"] == ["OPEN", "CLOSED"]
    assert "filterBy" in request["query"]
    state = IssueDAO().get_sync_state(repo_id)
    assert state is not None and state.last_fetched is not None
    assert state.last_fetched > watermark


@pytest.mark.asyncio
async def test_incremental_sync_advances_watermark_per_page(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository(last_fetched=datetime(2024, 5, 1, tzinfo=UTC))

    def _listing(body: dict[str, Any]) -> httpx.Response:
        if body["variables"]["after"] is None:
            return _page(
                ("repository", "issues"),
                [_issue(1, updated="2024-05-02T08:00:00Z"), _issue(2, updated="2024-05-03T09:30:00Z")],
                cursor="p1",
                more=True,
            )
        return httpx.Response(500, text="boom")

    github = FakeGitHub(listing=_listing)

    with pytest.raises(GitHubHTTPStatusError):
        await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), _deps(github))

    state = IssueDAO().get_sync_state(repo_id)
    assert state is not None
    assert state.last_fetched == datetime(2024, 5, 3, 9, 30, tzinfo=UTC)
    assert _issue_numbers() == [1, 2]


@pytest.mark.asyncio
async def test_rate_limited_comment_fetch_fails_job_but_keeps_page(
    make_user, make_repository
) -> None:
    user_id = make_user()
    repo_id = make_repository()
    github = FakeGitHub(
        listing=lambda body: _page(("repository", "issues"), [_issue(1, comments=4), _issue(2)]),
        comments=lambda body: httpx.Response(429, headers={"Retry-After": "60"}),
    )

    with pytest.raises(GitHubRateLimitedError):
        await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), _deps(github))

    assert _issue_numbers() == [1, 2]
    state = IssueDAO().get_sync_state(repo_id)
    assert state is not None and state.last_fetched is None


@pytest.mark.asyncio
async def test_comment_server_errors_are_skipped(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    github = FakeGitHub(
        listing=lambda body: _page(("repository", "issues"), [_issue(1, comments=4)]),
        comments=lambda body: httpx.Response(500, text="oops"),
    )

    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), _deps(github))

    assert _issue_numbers() == [1]
    assert _comment_ids(1) == []
    with session_scope() as session:
        issue = session.execute(select(Issue)).scalar_one()
        assert issue.comments_fetched is False
    state = IssueDAO().get_sync_state(repo_id)
    assert state is not None and state.last_fetched is not None


@pytest.mark.asyncio
async def test_unchanged_issue_comments_are_not_refetched(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    github = FakeGitHub(
        listing=lambda body: _page(("repository", "issues"), [_issue(1, comments=1)]),
        comments=lambda body: _page(_comment_path(body), [_comment(11)]),
    )
    deps = _deps(github)

    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)
    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)

    assert len(github.comment_requests) == 1
    assert _comment_ids(1) == [11]


@pytest.mark.asyncio
async def test_skipped_comments_on_updated_issue_are_fetched_next_run(
    make_user, make_repository
) -> None:
    user_id = make_user()
    repo_id = make_repository()
    current = {"issue": _issue(1, comments=1), "comments": [_comment(11)], "fail": False}

    def _comments(body: dict[str, Any]) -> httpx.Response:
        if current["fail"]:
            return httpx.Response(500, text="oops")
        return _page(_comment_path(body), current["comments"])

    github = FakeGitHub(
        listing=lambda body: _page(("repository", "issues"), [current["issue"]]),
        comments=_comments,
    )
    deps = _deps(github)

    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)
    assert _comment_ids(1) == [11]

    current["issue"] = _issue(1, updated="2024-05-03T08:00:00Z", comments=2)
    current["fail"] = True
    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)
    with session_scope() as session:
        issue = session.execute(select(Issue).where(Issue.number == 1)).scalar_one()
        assert issue.comments_fetched is False

    current["comments"] = [_comment(11), _comment(12)]
    current["fail"] = False
    github.comment_requests.clear()
    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)

    assert len(github.comment_requests) == 1
    assert _comment_ids(1) == [11, 12]


@pytest.mark.asyncio
async def test_rate_limited_comments_are_retried_by_next_job(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    current = {"issue": _issue(1, comments=1), "comments": [_comment(11)], "limited": False}

    def _comments(body: dict[str, Any]) -> httpx.Response:
        if current["limited"]:
            return httpx.Response(429, headers={"Retry-After": "60"})
        return _page(_comment_path(body), current["comments"])

    github = FakeGitHub(
        listing=lambda body: _page(("repository", "issues"), [current["issue"]]),
        comments=_comments,
    )
    deps = _deps(github)

    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)

    current["issue"] = _issue(1, updated="2024-05-03T08:00:00Z", comments=2)
    current["comments"] = [_comment(11), _comment(12)]
    current["limited"] = True
    with pytest.raises(GitHubRateLimitedError):
        await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)
    assert _comment_ids(1) == [11]

    current["limited"] = False
    await handle_issue_fetch(IssueFetchArgs(), _context(user_id, repo_id), deps)

    assert _comment_ids(1) == [11, 12]


@pytest.mark.asyncio
async def test_issue_fetch_queues_sentiment_when_analyzer_configured(
    make_user, make_repository
) -> None:
    user_id = make_user()
    repo_id = make_repository()
    github = FakeGitHub(listing=lambda body: _page(("repository", "issues"), []))
    queued: list[tuple[Any, ...]] = []

    async def _enqueue(*args: Any) -> bool:
        queued.append(args)
        return True

    await handle_issue_fetch(
        IssueFetchArgs(),
        _context(user_id, repo_id),
        _deps(github, enqueue=_enqueue, analyzer=StubAnalyzer()),
    )
    await handle_issue_fetch(
        IssueFetchArgs(), _context(user_id, repo_id), _deps(github, enqueue=_enqueue)
    )

    assert queued == [(JobType.SENTIMENT, repo_id, user_id, {})]


@pytest.mark.asyncio
async def test_pr_sync_full_then_incremental(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    nodes = [
        _pull_request(1, updated="2024-04-20T00:00:00Z"),
        _pull_request(2, updated="2024-05-05T00:00:00Z"),
    ]
    github = FakeGitHub(listing=lambda body: _page(("repository", "pullRequests"), nodes))

    await handle_pr_fetch(PullRequestFetchArgs(), _context(user_id, repo_id), _deps(github))

    first = github.listing_requests[0]
    assert first["variables"]["states"] == ["OPEN"]
    with session_scope() as session:
        assert session.execute(select(func.count(PullRequest.id))).scalar_one() == 2
        stored = session.execute(select(PullRequest).where(PullRequest.number == 1)).scalar_one()
        assert stored.reviewers == ["hubot"]
        assert stored.additions == 10
    state = IssueDAO().get_sync_state(repo_id)
    assert state is not None and state.last_pr_fetched is not None


@pytest.mark.asyncio
async def test_incremental_pr_sync_searches_from_watermark(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository(last_pr_fetched=datetime(2024, 5, 1, tzinfo=UTC))

    def _listing(body: dict[str, Any]) -> httpx.Response:
        if "searchQuery" not in body["variables"]:
            raise AssertionError("incremental sync must not page the full PR history")
        if body["variables"]["after"] is None:
            return _page(
                ("search",),
                [_pull_request(2, updated="2024-05-05T00:00:00Z"), {}],
                cursor="s1",
                more=True,
            )
        return _page(("search",), [_pull_request(3, updated="2024-05-06T00:00:00Z")])

    github = FakeGitHub(listing=_listing)

    await handle_pr_fetch(PullRequestFetchArgs(), _context(user_id, repo_id), _deps(github))

    assert [request["variables"]["searchQuery"] for request in github.listing_requests] == [
        "repo:octo/demo is:pr updated:>=2024-04-30T23:59:00Z sort:updated-asc"
    ] * 2
    assert [request["variables"]["after"] for request in github.listing_requests] == [None, "s1"]
    assert all("pullRequests(" not in request["query"] for request in github.listing_requests)
    with session_scope() as session:
        numbers = session.execute(
            select(PullRequest.number)
            .where(PullRequest.repo_id == repo_id)
            .order_by(PullRequest.number)
        ).scalars().all()
    assert numbers == [2, 3]


@pytest.mark.asyncio
async def test_capped_pr_search_resumes_from_newest_result(
    make_user, make_repository, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(queries, "SEARCH_RESULT_LIMIT", 2)
    user_id = make_user()
    repo_id = make_repository(last_pr_fetched=datetime(2024, 5, 1, tzinfo=UTC))
    results = {
        "2024-04-30T23:59:00Z": [
            _pull_request(1, updated="2024-05-02T00:00:00Z"),
            _pull_request(2, updated="2024-05-03T00:00:00Z"),
        ],
        "2024-05-03T00:00:00Z": [
            _pull_request(2, updated="2024-05-03T00:00:00Z"),
            _pull_request(3, updated="2024-05-04T00:00:00Z"),
        ],
        "2024-05-04T00:00:00Z": [_pull_request(3, updated="2024-05-04T00:00:00Z")],
    }

    def _listing(body: dict[str, Any]) -> httpx.Response:
        since = body["variables"]["searchQuery"].split("updated:>=")[1].split(" ")[0]
        return _page(("search",), results[since])

    github = FakeGitHub(listing=_listing)

    await handle_pr_fetch(PullRequestFetchArgs(), _context(user_id, repo_id), _deps(github))

    assert len(github.listing_requests) == 3
    with session_scope() as session:
        numbers = session.execute(
            select(PullRequest.number)
            .where(PullRequest.repo_id == repo_id)
            .order_by(PullRequest.number)
        ).scalars().all()
    assert numbers == [1, 2, 3]


class StubAnalyzer:
    def __init__(self, *, fail_on: Sequence[int] = ()) -> None:
        self.seen: list[tuple[int, list[int]]] = []
        self._fail_on = set(fail_on)

    async def analyze(
        self, issue: IssueSnapshot, comments: Sequence[CommentSnapshot]
    ) -> SentimentResult:
        if issue.number in self._fail_on:
            raise RuntimeError("model unavailable")
        self.seen.append((issue.number, [comment.github_comment_id for comment in comments]))
        return SentimentResult(score=0.25 * issue.number, metadata={"model": "stub"})


def _seed_issues(repo_id: int) -> None:
    dao = IssueDAO()
    outcomes = dao.upsert_issues(repo_id, [_issue(1, comments=1), _issue(2)])
    dao.replace_issue_comments(outcomes[0].local_id, [_comment(11)])


@pytest.mark.asyncio
async def test_sentiment_analyzes_only_stale_issues(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    _seed_issues(repo_id)
    analyzer = StubAnalyzer()
    deps = HandlerDeps(dao=IssueDAO(), config=_CONFIG, analyzer=analyzer)

    await handle_sentiment(SentimentArgs(), _context(user_id, repo_id), deps)

    assert analyzer.seen == [(1, [11]), (2, [])]
    with session_scope() as session:
        analyses = session.execute(
            select(IssueAnalysis).order_by(IssueAnalysis.issue_id)
        ).scalars().all()
        assert [analysis.score for analysis in analyses] == [0.25, 0.5]
        assert all(analysis.metadata_json == {"model": "stub"} for analysis in analyses)
        assert all(analysis.analysis_type == "sentiment" for analysis in analyses)

    analyzer.seen.clear()
    await handle_sentiment(SentimentArgs(), _context(user_id, repo_id), deps)
    assert analyzer.seen == []


@pytest.mark.asyncio
async def test_sentiment_skips_failing_issues(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    _seed_issues(repo_id)
    analyzer = StubAnalyzer(fail_on=[1])
    deps = HandlerDeps(dao=IssueDAO(), config=_CONFIG, analyzer=analyzer)

    await handle_sentiment(SentimentArgs(), _context(user_id, repo_id), deps)

    assert analyzer.seen == [(2, [])]
    assert [issue.number for issue in IssueDAO().find_stale_issues(repo_id, "sentiment")] == [1]


@pytest.mark.asyncio
async def test_sentiment_without_analyzer_is_a_no_op(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    _seed_issues(repo_id)

    await handle_sentiment(
        SentimentArgs(), _context(user_id, repo_id), HandlerDeps(dao=IssueDAO(), config=_CONFIG)
    )

    with session_scope() as session:
        assert session.execute(select(func.count(IssueAnalysis.id))).scalar_one() == 0


@pytest.mark.asyncio
async def test_single_issue_refresh_replaces_comments(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()
    _seed_issues(repo_id)

    def _listing(body: dict[str, Any]) -> httpx.Response:
        raise AssertionError("refresh must not list the repository")

    def _route(body: dict[str, Any]) -> httpx.Response:
        if "comments(first" in body["query"]:
            return _page(_comment_path(body), [_comment(12), _comment(13)])
        updated = _issue(1, updated="2024-06-01T00:00:00Z", comments=2)
        updated["title"] = "Renamed"
        return httpx.Response(200, json={"data": {"repository": {"issue": updated}}})

    github = FakeGitHub(listing=_listing, comments=_route)

    await handle_single_issue_refresh(
        SingleIssueRefreshArgs(issue_number=1), _context(user_id, repo_id), _deps(github)
    )

    assert _comment_ids(1) == [12, 13]
    with session_scope() as session:
        issue = session.execute(select(Issue).where(Issue.number == 1)).scalar_one()
        assert issue.title == "Renamed"
        assert ensure_utc(issue.updated_at) == datetime(2024, 6, 1, tzinfo=UTC)


@pytest.mark.asyncio
async def test_single_pr_refresh_stores_pull_request(make_user, make_repository) -> None:
    user_id = make_user()
    repo_id = make_repository()

    def _route(body: dict[str, Any]) -> httpx.Response:
        if "comments(first" in body["query"]:
            return _page(_comment_path(body), [_comment(77)])
        return httpx.Response(
            200, json={"data": {"repository": {"pullRequest": _pull_request(8)}}}
        )

    github = FakeGitHub(listing=lambda body: _page(("repository", "pullRequests"), []), comments=_route)

    await handle_single_pr_refresh(
        SinglePullRequestRefreshArgs(pr_number=8), _context(user_id, repo_id), _deps(github)
    )

    with session_scope() as session:
        pull_request = session.execute(select(PullRequest)).scalar_one()
        assert pull_request.number == 8
        assert pull_request.comments_fetched is True


@pytest.mark.asyncio
async def test_registry_runs_issue_fetch_end_to_end(make_user, make_repository) -> None:
    user_id = make_user(access_token="gho_live")
    repo_id = make_repository(owner="octo", name="hello")
    github = FakeGitHub(listing=lambda body: _page(("repository", "issues"), [_issue(5)]))
    registry = build_handler_registry(_deps(github))
    job = persistence.enqueue_job(JobType.ISSUE_FETCH, repo_id, user_id)
    assert job is not None

    await registry.run(job)

    [request] = github.listing_requests
    assert request["variables"]["owner"] == "octo"
    assert request["variables"]["repo"] == "hello"
    assert _issue_numbers() == [5]
