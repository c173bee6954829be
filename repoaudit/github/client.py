"""Async GitHub GraphQL client with shared pacing and cursor pagination."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from repoaudit.config import GitHubConfig, load_config
from repoaudit.github.pacing import RequestPacer, get_default_pacer
from repoaudit.github.queries import (
    SINGLE_ISSUE_QUERY,
    SINGLE_PULL_REQUEST_QUERY,
    ListResource,
)
from repoaudit.logging import get_logger
from repoaudit.utils.time import format_github_datetime

logger = get_logger(__name__)


class GitHubClientError(RuntimeError):
    """Base exception raised for GitHub client failures."""


class GitHubTimeoutError(GitHubClientError):
    def __init__(self, message: str = "GitHub request timed out") -> None:
        super().__init__(message)


class GitHubInvalidResponseError(GitHubClientError):
    """Raised when the payload is not the JSON shape we asked for."""


class GitHubHTTPStatusError(GitHubClientError):
    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GitHubRateLimitedError(GitHubHTTPStatusError):
    """Raised for primary (429) or secondary (403) rate limits."""

    def __init__(
        self,
        status_code: int = 429,
        message: str = "GitHub rate limited the request",
        *,
        retry_after_ms: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(status_code, message, body=body)
        self.retry_after_ms = retry_after_ms


class GitHubGraphQLError(GitHubClientError):
    def __init__(self, message: str, *, errors: list[Mapping[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class GitHubNotFoundError(GitHubGraphQLError):
    """Raised when the requested repository, issue or PR does not exist."""


def is_rate_limit_error(error: BaseException) -> bool:
    """Return True for errors GitHub uses to throttle us.

    Besides explicit rate limits, 502/504 responses are how GitHub tends to
    answer sustained API usage.
    """

    if isinstance(error, GitHubRateLimitedError):
        return True
    if isinstance(error, GitHubHTTPStatusError):
        return error.status_code in {502, 504}
    if isinstance(error, GitHubGraphQLError):
        return any(str(item.get("type", "")).upper() == "RATE_LIMITED" for item in error.errors)
    return False


@dataclass(slots=True)
class Page:
    """One page of a cursor-paginated listing."""

    items: list[dict[str, Any]]
    has_more: bool
    end_cursor: str | None = None


class GitHubClient:
    """GitHub GraphQL client bound to one user's access token.

    Every request goes through the shared :class:`RequestPacer`. No request is
    retried: errors propagate to the calling job handler.
    """

    def __init__(
        self,
        access_token: str,
        *,
        config: GitHubConfig | None = None,
        pacer: RequestPacer | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("access_token must not be empty")
        self._token = access_token
        self._config = config or load_config().github
        self._pacer = pacer or get_default_pacer()
        self._transport = transport

    @property
    def pacer(self) -> RequestPacer:
        return self._pacer

    async def execute(self, query: str, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL document and return its ``data`` member."""

        return await self._pacer.call(lambda: self._post(query, dict(variables or {})))

    async def fetch_page(
        self,
        resource: ListResource,
        page_size: int | None = None,
        cursor: str | None = None,
        since: datetime | None = None,
    ) -> Page:
        """Fetch one page of ``resource``.

        With ``since`` only entities updated at or after it are returned, in
        ascending update order.
        """

        size = max(1, min(int(page_size or self._config.page_size), 100))
        since_text = format_github_datetime(since) if since is not None else None
        query, variables = resource.build(page_size=size, cursor=cursor, since=since_text)
        data = await self.execute(query, variables)
        connection = _dig(data, resource.connection_for(since_text), resource=resource.name)
        if not isinstance(connection, Mapping):
            raise GitHubInvalidResponseError(f"{resource.name} returned no connection")

        # Search results of another type come back as empty objects.
        nodes = [node for node in connection.get("nodes") or [] if isinstance(node, Mapping) and node]
        page_info = connection.get("pageInfo") or {}
        return Page(
            items=[dict(node) for node in nodes],
            has_more=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    async def iter_pages(
        self,
        resource: ListResource,
        *,
        page_size: int | None = None,
        since: datetime | None = None,
    ) -> AsyncIterator[Page]:
        """Yield pages of ``resource`` until GitHub reports no further page."""

        cursor: str | None = None
        while True:
            page = await self.fetch_page(resource, page_size, cursor, since)
            yield page
            if not page.has_more:
                return
            if not page.end_cursor or page.end_cursor == cursor:
                raise GitHubInvalidResponseError(
                    f"{resource.name} reported another page without a new cursor"
                )
            cursor = page.end_cursor

    async def fetch_all(
        self,
        resource: ListResource,
        *,
        page_size: int | None = None,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Eagerly collect ``resource`` into a list, stopping at ``limit`` items."""

        cap = max(1, int(limit if limit is not None else self._config.comment_limit))
        items: list[dict[str, Any]] = []
        async for page in self.iter_pages(resource, page_size=page_size, since=since):
            items.extend(page.items)
            if len(items) >= cap:
                return items[:cap]
        return items

    async def fetch_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        data = await self.execute(
            SINGLE_ISSUE_QUERY, {"owner": owner, "repo": repo, "number": number}
        )
        node = _dig(data, ("repository", "issue"), resource="repository.issue")
        if not isinstance(node, Mapping):
            raise GitHubNotFoundError(f"Issue #{number} not found in {owner}/{repo}")
        return dict(node)

    async def fetch_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        data = await self.execute(
            SINGLE_PULL_REQUEST_QUERY, {"owner": owner, "repo": repo, "number": number}
        )
        node = _dig(data, ("repository", "pullRequest"), resource="repository.pullRequest")
        if not isinstance(node, Mapping):
            raise GitHubNotFoundError(f"Pull request #{number} not found in {owner}/{repo}")
        return dict(node)

    async def _post(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Accept": "application/json",
            "Authorization": f"bearer {self._token}",
            "User-Agent": "repoaudit",
        }
        try:
            async with httpx.AsyncClient(
                timeout=_build_timeout(self._config.timeout_ms),
                headers=headers,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self._config.graphql_url,
                    json={"query": query, "variables": variables},
                )
        except httpx.TimeoutException as exc:
            raise GitHubTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise GitHubClientError(f"GitHub request failed: {exc}") from exc

        _raise_for_status(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise GitHubInvalidResponseError("GitHub returned invalid JSON") from exc
        if not isinstance(payload, Mapping):
            raise GitHubInvalidResponseError("GitHub returned an unexpected payload")

        errors = payload.get("errors")
        if errors:
            raise _graphql_error(errors)
        data = payload.get("data")
        if not isinstance(data, Mapping):
            raise GitHubInvalidResponseError("GitHub response has no data")
        return dict(data)


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code == httpx.codes.OK:
        return
    body_preview = response.text[:200]
    retry_after = _parse_retry_after_ms(response.headers)
    if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
        raise GitHubRateLimitedError(
            429,
            "GitHub API rate limit exceeded",
            retry_after_ms=retry_after,
            body=body_preview,
        )
    if response.status_code == httpx.codes.FORBIDDEN and (
        response.headers.get("x-ratelimit-remaining") == "0"
        or "rate limit" in body_preview.lower()
        or "abuse detection" in body_preview.lower()
    ):
        raise GitHubRateLimitedError(
            403,
            "GitHub secondary rate limit hit",
            retry_after_ms=retry_after,
            body=body_preview,
        )
    raise GitHubHTTPStatusError(
        response.status_code,
        f"GitHub responded with HTTP {response.status_code}",
        body=body_preview,
    )


def _graphql_error(errors: Any) -> GitHubClientError:
    items = [item for item in errors if isinstance(item, Mapping)] if isinstance(errors, list) else []
    types = {str(item.get("type", "")).upper() for item in items}
    messages = "; ".join(str(item.get("message", "")) for item in items if item.get("message"))
    message = messages or "GitHub GraphQL request failed"
    if "RATE_LIMITED" in types:
        # GraphQL rate limits arrive with HTTP 200.
        return GitHubRateLimitedError(200, message)
    if "NOT_FOUND" in types:
        return GitHubNotFoundError(message, errors=items)
    return GitHubGraphQLError(message, errors=items)


def _dig(data: Mapping[str, Any], path: tuple[str, ...], *, resource: str) -> Any:
    current: Any = data
    for key in path:
        if not isinstance(current, Mapping):
            raise GitHubInvalidResponseError(f"{resource}: unexpected payload at '{key}'")
        current = current.get(key)
        if current is None:
            return None
    return current


def _parse_retry_after_ms(headers: Mapping[str, Any]) -> int | None:
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0, int(str(value).strip()) * 1000)
    except (TypeError, ValueError):
        return None


def _build_timeout(timeout_ms: int) -> httpx.Timeout:
    seconds = max(timeout_ms, 100) / 1000
    return httpx.Timeout(seconds, connect=min(seconds, 5.0))


__all__ = [
    "GitHubClient",
    "GitHubClientError",
    "GitHubGraphQLError",
    "GitHubHTTPStatusError",
    "GitHubInvalidResponseError",
    "GitHubNotFoundError",
    "GitHubRateLimitedError",
    "GitHubTimeoutError",
    "Page",
    "is_rate_limit_error",
]
