"""Time helpers for UTC timestamps and GitHub datetime strings."""

from __future__ import annotations

from datetime import UTC, datetime

__all__ = ["ensure_utc", "format_github_datetime", "now_utc", "parse_github_datetime"]


def now_utc() -> datetime:
    """Return the current UTC time with timezone information."""

    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values (SQLite drops the offset on read)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_github_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp such as ``2024-05-01T12:00:00Z``."""

    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_github_datetime(value: datetime) -> str:
    """Render ``value`` the way GitHub's ``DateTime`` scalar expects."""

    normalised = ensure_utc(value)
    assert normalised is not None
    return normalised.replace(microsecond=0).isoformat().replace("+00:00", "Z")
