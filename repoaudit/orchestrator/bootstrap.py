"""Bootstrap helpers for orchestrator runtime wiring."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from repoaudit.config import AppConfig, load_config
from repoaudit.models import JobType
from repoaudit.orchestrator.coordinator import JobCoordinator
from repoaudit.orchestrator.handlers import ClientFactory, HandlerDeps, build_handler_registry
from repoaudit.orchestrator.registry import HandlerRegistry
from repoaudit.orchestrator.status import TargetStatusTracker
from repoaudit.services.issue_dao import IssueDAO
from repoaudit.services.sentiment import SentimentAnalyzer


@dataclass(slots=True)
class OrchestratorRuntime:
    """Container bundling the coordinator and the components it drives."""

    coordinator: JobCoordinator
    registry: HandlerRegistry
    status_tracker: TargetStatusTracker
    deps: HandlerDeps


def bootstrap_orchestrator(
    *,
    config: AppConfig | None = None,
    analyzer: SentimentAnalyzer | None = None,
    client_factory: ClientFactory | None = None,
    dao: IssueDAO | None = None,
) -> OrchestratorRuntime:
    """Initialise the coordinator with its handlers and shared dependencies."""

    resolved = config or load_config()
    coordinator: JobCoordinator | None = None

    async def _enqueue(
        job_type: JobType | str,
        repo_id: int,
        user_id: int,
        args: Mapping[str, Any] | None = None,
        priority: int | None = None,
    ) -> bool:
        assert coordinator is not None
        return await coordinator.enqueue(job_type, repo_id, user_id, args, priority)

    deps = HandlerDeps(
        dao=dao or IssueDAO(),
        config=resolved.github,
        client_factory=client_factory,
        enqueue=_enqueue,
        analyzer=analyzer,
    )
    registry = build_handler_registry(deps)
    status_tracker = TargetStatusTracker()
    coordinator = JobCoordinator(
        registry,
        status_tracker=status_tracker,
        config=resolved.jobs,
    )
    return OrchestratorRuntime(
        coordinator=coordinator,
        registry=registry,
        status_tracker=status_tracker,
        deps=deps,
    )


__all__ = ["OrchestratorRuntime", "bootstrap_orchestrator"]
