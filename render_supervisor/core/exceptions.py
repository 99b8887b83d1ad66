"""
Custom exceptions for Render Supervisor.

This module provides a hierarchy of custom exceptions for the supervisor.
All exceptions inherit from RenderSupervisorError and include error codes for
consistent error handling and logging.

Backend failures themselves are never raised through this hierarchy: they are
reported to the orchestrator as data and turned into fallbacks. These
exceptions signal misuse (an invalid chain, an unknown strategy) or a gate the
host asked to enforce (mounting through an open circuit).

Reference:
- GUIDELINES: Specific exceptions, always capture with 'as e'
"""

from enum import Enum
from typing import Any, Optional


# =============================================================================
# Error Codes Enum
# =============================================================================


class ErrorCode(str, Enum):
    """
    Error codes for Render Supervisor exceptions.

    These codes provide a consistent way to identify error types in logs.
    """

    SUPERVISOR_ERROR = "SUPERVISOR_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    FALLBACK_CHAIN_ERROR = "FALLBACK_CHAIN_ERROR"
    RECOVERY_ERROR = "RECOVERY_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


# =============================================================================
# Base Exception
# =============================================================================


class RenderSupervisorError(Exception):
    """
    Base exception for all Render Supervisor errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.SUPERVISOR_ERROR,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

        for key, value in kwargs.items():
            setattr(self, key, value)


# =============================================================================
# CircuitBreakerError
# =============================================================================


class CircuitBreakerError(RenderSupervisorError):
    """
    Raised when a backend is mounted through a circuit that rejects it.

    Attributes:
        subject_id: Subject whose circuit rejected the mount.
        backend_id: Backend the circuit belongs to.
        level: Breaker level at the time of rejection.
        cooldown_remaining: Seconds until the circuit probes again.
    """

    def __init__(
        self,
        subject_id: str,
        backend_id: str,
        level: str,
        cooldown_remaining: float = 0.0,
        message: Optional[str] = None,
        error_code: str = ErrorCode.CIRCUIT_OPEN,
        **kwargs: Any,
    ) -> None:
        text = message or (
            f"CircuitBreakerError[{subject_id}/{backend_id}]: circuit is {level}"
        )
        super().__init__(text, error_code, **kwargs)
        self.subject_id = subject_id
        self.backend_id = backend_id
        self.level = level
        self.cooldown_remaining = cooldown_remaining


# =============================================================================
# FallbackChainError
# =============================================================================


class FallbackChainError(RenderSupervisorError):
    """
    Raised when a fallback chain cannot be built.

    A chain must always end in an always-available backend; a probe result
    that leaves no such backend is a configuration error, not a runtime one.

    Attributes:
        chain_name: Name of the fallback chain.
        backend_ids: Backends that were offered to the chain.
    """

    def __init__(
        self,
        chain_name: str,
        message: str = "No always-available backend",
        backend_ids: Optional[list[str]] = None,
        error_code: str = ErrorCode.FALLBACK_CHAIN_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            f"FallbackChainError[{chain_name}]: {message}", error_code, **kwargs
        )
        self.chain_name = chain_name
        self.backend_ids = backend_ids or []


# =============================================================================
# RecoveryError
# =============================================================================


class RecoveryError(RenderSupervisorError):
    """
    Raised when a recovery cannot be scheduled.

    Attributes:
        subject_id: Subject the recovery was meant for.
        strategy_name: Name of the requested strategy.
    """

    def __init__(
        self,
        message: str,
        subject_id: Optional[str] = None,
        strategy_name: Optional[str] = None,
        error_code: str = ErrorCode.RECOVERY_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.subject_id = subject_id
        self.strategy_name = strategy_name


class ConfigurationError(RenderSupervisorError):
    """Raised when supervisor components are wired inconsistently."""

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.CONFIGURATION_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
