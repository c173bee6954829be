"""FastAPI dependency providers."""

from __future__ import annotations

from fastapi import Request

from repoaudit.errors import DependencyError
from repoaudit.orchestrator.bootstrap import OrchestratorRuntime
from repoaudit.orchestrator.coordinator import JobCoordinator


def get_orchestrator(request: Request) -> OrchestratorRuntime:
    runtime = getattr(request.app.state, "orchestrator", None)
    if not isinstance(runtime, OrchestratorRuntime):
        raise DependencyError("Job orchestrator is not running.")
    return runtime


def get_coordinator(request: Request) -> JobCoordinator:
    return get_orchestrator(request).coordinator


__all__ = ["get_coordinator", "get_orchestrator"]
