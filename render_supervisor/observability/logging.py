"""
Structured Logging Module

JSON logging for the supervisor. The id of the subject being handled is kept
in structlog's context variables, so every event logged while a failure,
mount or recovery of that subject is processed carries it, including events
from recovery tasks started inside the block.

Pattern: Singleton configuration (configure once at startup)
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

import structlog
from structlog.types import Processor

SUBJECT_KEY = "subject_id"

_LEVELS = {
    name: getattr(logging, name)
    for name in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
}

_configured: bool = False


# =============================================================================
# Subject Context
# =============================================================================


@contextmanager
def subject_context(subject_id: str) -> Iterator[None]:
    """
    Bind a subject id to every event logged inside the block.

    Leaving a nested block restores the outer id. A subject_id passed
    explicitly to a log call wins over the bound one.

    Example:
        >>> with subject_context("hero-dragon"):
        ...     logger.warning("falling back", to_backend="canvas-2d")
    """
    with structlog.contextvars.bound_contextvars(**{SUBJECT_KEY: subject_id}):
        yield


def current_subject() -> Optional[str]:
    """Subject id bound by the innermost subject_context, if any."""
    return structlog.contextvars.get_contextvars().get(SUBJECT_KEY)


# =============================================================================
# Configuration
# =============================================================================


def configure_logging(
    level: str = "INFO",
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> None:
    """
    Configure structlog for JSON output.

    Only the first call takes effect unless force=True.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream (default: sys.stdout)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=False,
    )

    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger bound to a module name.

    Configures logging with defaults if nothing configured it yet.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.warning("circuit opened", backend="webgl-3d")
    """
    configure_logging()
    return structlog.get_logger().bind(logger=name)
