"""Application configuration utilities for repoaudit."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from typing import Any

DEFAULT_DATABASE_URL = "sqlite:///./data/repoaudit.db"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
DEFAULT_GITHUB_MIN_REQUEST_INTERVAL_MS = 500
DEFAULT_GITHUB_TIMEOUT_MS = 15_000
DEFAULT_GITHUB_PAGE_SIZE = 100
DEFAULT_GITHUB_COMMENT_LIMIT = 100
DEFAULT_JOBS_MAX_CONCURRENT = 5
DEFAULT_JOBS_RETENTION_DAYS = 7
DEFAULT_JOBS_PRIORITY = 50

_RUNTIME_ENV_OVERRIDE: dict[str, str] | None = None


def get_runtime_env() -> Mapping[str, str]:
    """Return the active environment mapping (override or ``os.environ``)."""

    if _RUNTIME_ENV_OVERRIDE is not None:
        return _RUNTIME_ENV_OVERRIDE
    return os.environ


def override_runtime_env(runtime_env: Mapping[str, str] | None) -> None:
    """Replace the environment used by :func:`load_config` (``None`` resets)."""

    global _RUNTIME_ENV_OVERRIDE
    if runtime_env is None:
        _RUNTIME_ENV_OVERRIDE = None
        return
    _RUNTIME_ENV_OVERRIDE = {str(key): str(value) for key, value in runtime_env.items()}


def get_env(name: str, default: str | None = None) -> str | None:
    value = get_runtime_env().get(name)
    if value is None:
        return default
    return value


def _as_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    text = str(value).strip().lower()
    if not text:
        return default
    return text in {"1", "true", "yes", "on"}


def _bounded_int(
    value: Any,
    *,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    try:
        parsed = int(str(value).strip()) if value is not None else default
    except (TypeError, ValueError):
        parsed = default
    if minimum is not None and parsed < minimum:
        parsed = minimum
    if maximum is not None and parsed > maximum:
        parsed = maximum
    return parsed


@dataclass(slots=True, frozen=True)
class DatabaseConfig:
    url: str

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> DatabaseConfig:
        raw = (env.get("DATABASE_URL") or "").strip()
        return cls(url=raw or DEFAULT_DATABASE_URL)


@dataclass(slots=True, frozen=True)
class LoggingConfig:
    level: str
    log_file: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> LoggingConfig:
        level = (env.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper()
        log_file = (env.get("LOG_FILE") or "").strip() or None
        return cls(level=level or DEFAULT_LOG_LEVEL, log_file=log_file)


@dataclass(slots=True, frozen=True)
class GitHubConfig:
    graphql_url: str
    min_request_interval_ms: int
    timeout_ms: int
    page_size: int
    comment_limit: int

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> GitHubConfig:
        url = (env.get("GITHUB_GRAPHQL_URL") or "").strip() or DEFAULT_GITHUB_GRAPHQL_URL
        return cls(
            graphql_url=url,
            min_request_interval_ms=_bounded_int(
                env.get("GITHUB_MIN_REQUEST_INTERVAL_MS"),
                default=DEFAULT_GITHUB_MIN_REQUEST_INTERVAL_MS,
                minimum=0,
            ),
            timeout_ms=_bounded_int(
                env.get("GITHUB_TIMEOUT_MS"),
                default=DEFAULT_GITHUB_TIMEOUT_MS,
                minimum=100,
            ),
            # GitHub caps connection pages at 100 nodes.
            page_size=_bounded_int(
                env.get("GITHUB_PAGE_SIZE"),
                default=DEFAULT_GITHUB_PAGE_SIZE,
                minimum=1,
                maximum=100,
            ),
            comment_limit=_bounded_int(
                env.get("GITHUB_COMMENT_LIMIT"),
                default=DEFAULT_GITHUB_COMMENT_LIMIT,
                minimum=1,
            ),
        )


@dataclass(slots=True, frozen=True)
class JobQueueConfig:
    enabled: bool
    max_concurrent: int
    retention_days: int
    default_priority: int

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> JobQueueConfig:
        return cls(
            enabled=_as_bool(env.get("JOBS_ENABLED"), default=True),
            max_concurrent=_bounded_int(
                env.get("JOBS_MAX_CONCURRENT"),
                default=DEFAULT_JOBS_MAX_CONCURRENT,
                minimum=1,
            ),
            retention_days=_bounded_int(
                env.get("JOBS_RETENTION_DAYS"),
                default=DEFAULT_JOBS_RETENTION_DAYS,
                minimum=0,
            ),
            default_priority=_bounded_int(
                env.get("JOBS_DEFAULT_PRIORITY"),
                default=DEFAULT_JOBS_PRIORITY,
            ),
        )


@dataclass(slots=True, frozen=True)
class AppConfig:
    database: DatabaseConfig
    logging: LoggingConfig
    github: GitHubConfig
    jobs: JobQueueConfig


def load_config(runtime_env: Mapping[str, Any] | None = None) -> AppConfig:
    """Build the application configuration from the runtime environment."""

    env = runtime_env if runtime_env is not None else get_runtime_env()
    return AppConfig(
        database=DatabaseConfig.from_env(env),
        logging=LoggingConfig.from_env(env),
        github=GitHubConfig.from_env(env),
        jobs=JobQueueConfig.from_env(env),
    )


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "GitHubConfig",
    "JobQueueConfig",
    "LoggingConfig",
    "get_env",
    "get_runtime_env",
    "load_config",
    "override_runtime_env",
]
