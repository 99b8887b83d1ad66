"""
Core module for Render Supervisor.

This module contains configuration, exceptions, and shared utilities.
"""

from render_supervisor.core.config import Settings, get_settings
from render_supervisor.core.exceptions import (
    CircuitBreakerError,
    ConfigurationError,
    ErrorCode,
    FallbackChainError,
    RecoveryError,
    RenderSupervisorError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "ErrorCode",
    "RenderSupervisorError",
    "CircuitBreakerError",
    "FallbackChainError",
    "RecoveryError",
    "ConfigurationError",
]
