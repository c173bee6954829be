"""Background job queue persistence."""

from . import persistence
from .persistence import JobDTO

__all__ = ["JobDTO", "persistence"]
