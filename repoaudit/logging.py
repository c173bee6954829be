"""Logging configuration utilities."""

from __future__ import annotations

import logging
import sys

from repoaudit.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Install stdout (and optional file) handlers on the root logger."""

    level_name = config.level if config is not None else "INFO"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config is not None and config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
