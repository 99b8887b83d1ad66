"""
Observability Package

This package provides observability infrastructure:
- Structured JSON logging with subject context (structlog)

Breaker and fallback metrics live next to the code that emits them in
render_supervisor.resilience.metrics.
"""

from render_supervisor.observability.logging import (
    configure_logging,
    current_subject,
    get_logger,
    subject_context,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "subject_context",
    "current_subject",
]
