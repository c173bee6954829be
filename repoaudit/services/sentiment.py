"""Interface for pluggable issue sentiment analyzers."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

SENTIMENT_ANALYSIS_TYPE = "sentiment"


@dataclass(slots=True, frozen=True)
class IssueSnapshot:
    id: int
    repo_id: int
    number: int
    title: str
    body: str | None
    state: str
    labels: tuple[str, ...]
    updated_at: datetime


@dataclass(slots=True, frozen=True)
class CommentSnapshot:
    github_comment_id: int
    author: str
    body: str | None
    created_at: datetime


@dataclass(slots=True)
class SentimentResult:
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SentimentAnalyzer(Protocol):
    """Scores an issue together with its cached comments.

    Implementations typically call an LLM; the orchestrator only needs the
    resulting score and a JSON-compatible metadata mapping.
    """

    async def analyze(
        self,
        issue: IssueSnapshot,
        comments: Sequence[CommentSnapshot],
    ) -> SentimentResult: ...


__all__ = [
    "CommentSnapshot",
    "IssueSnapshot",
    "SENTIMENT_ANALYSIS_TYPE",
    "SentimentAnalyzer",
    "SentimentResult",
]
