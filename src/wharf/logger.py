"""Structured logging for wharf.

wharf is imported into a host process, so it configures only the ``wharf``
stdlib logger and never the root logger or ``sys.excepthook``. The level comes
from ``LOG_LEVEL`` at import time because config.toml is resolved relative to
the working directory and may not be readable yet. Entry points then apply the
``[logging] level`` setting with :func:`set_level`.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LOGGER_NAME = "wharf"


def _resolve_level(level_name: str) -> int:
    return logging.getLevelNamesMapping().get(level_name.upper(), logging.INFO)


def _setup_logging() -> structlog.stdlib.BoundLogger:
    stdlib_logger = logging.getLogger(LOGGER_NAME)
    stdlib_logger.setLevel(_resolve_level(os.environ.get("LOG_LEVEL", "INFO")))
    if not stdlib_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        stdlib_logger.addHandler(handler)
    # Host applications keep their own root formatting
    stdlib_logger.propagate = False

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(LOGGER_NAME)


def set_level(level_name: str) -> None:
    """Apply a level name such as ``"DEBUG"`` to every wharf log call."""
    logging.getLogger(LOGGER_NAME).setLevel(_resolve_level(level_name))


logger = _setup_logging()
