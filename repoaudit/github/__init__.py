"""GitHub GraphQL access: request pacing, query documents and the client."""

from repoaudit.github.client import (
    GitHubClient,
    GitHubClientError,
    GitHubGraphQLError,
    GitHubHTTPStatusError,
    GitHubInvalidResponseError,
    GitHubNotFoundError,
    GitHubRateLimitedError,
    GitHubTimeoutError,
    Page,
    is_rate_limit_error,
)
from repoaudit.github.pacing import RequestPacer, get_default_pacer, rate_limited_call

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
    "RequestPacer",
    "get_default_pacer",
    "is_rate_limit_error",
    "rate_limited_call",
]
