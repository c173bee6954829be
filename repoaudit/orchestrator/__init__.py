"""Background job orchestration: coordinator, registry, status and handlers."""

from .bootstrap import OrchestratorRuntime, bootstrap_orchestrator
from .coordinator import JobCoordinator
from .handlers import HandlerDeps, build_handler_registry
from .registry import HandlerRegistry, HandlerSpec
from .status import TargetStatus, TargetStatusTracker

__all__ = [
    "HandlerDeps",
    "HandlerRegistry",
    "HandlerSpec",
    "JobCoordinator",
    "OrchestratorRuntime",
    "TargetStatus",
    "TargetStatusTracker",
    "bootstrap_orchestrator",
    "build_handler_registry",
]
