"""Background sync orchestration for repository issue audits."""

__version__ = "0.1.0"
