"""Domain models shared by the supervisor components."""

from render_supervisor.models.domain import (
    BackendDescriptor,
    BreakerDecision,
    BreakerLevel,
    BreakerStatus,
    CircuitBreakerState,
    DebugSnapshot,
    DeviceCapabilities,
    ErrorKind,
    ErrorSignature,
    FailureAction,
    FailureOutcome,
    RecoveryPolicy,
    SupervisorEvent,
)

__all__ = [
    "BackendDescriptor",
    "BreakerDecision",
    "BreakerLevel",
    "BreakerStatus",
    "CircuitBreakerState",
    "DebugSnapshot",
    "DeviceCapabilities",
    "ErrorKind",
    "ErrorSignature",
    "FailureAction",
    "FailureOutcome",
    "RecoveryPolicy",
    "SupervisorEvent",
]
