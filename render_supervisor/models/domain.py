"""
Domain Models

This module contains the value objects exchanged between the supervisor
components: error kinds and recovery policies, error signatures, backend
descriptors and device capabilities, breaker status snapshots, and the events
published to the host application.

Pattern: Domain models as value objects (Percival & Gregory pp. 59-65)
Pattern: Pydantic for validation at component boundaries

Note: CircuitBreakerState is the only mutable model here. Breakers mutate it;
hosts should read BreakerStatus or DebugSnapshot instead.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Error Taxonomy
# =============================================================================


class ErrorKind(str, Enum):
    """Closed set of failure categories a backend failure is sorted into."""

    NETWORK = "network"
    LOADING = "loading"
    PARSING = "parsing"
    MEMORY = "memory"
    VALIDATION = "validation"
    ANIMATION = "animation"
    MATERIAL = "material"
    TEXTURE = "texture"
    GEOMETRY = "geometry"
    GENERIC = "generic"


class RecoveryPolicy(BaseModel):
    """
    How a failure of one ErrorKind may be recovered.

    Attributes:
        can_recover: False means the only remedy is another backend.
        recovery_delay_ms: Delay before the strategy runs.
        max_retries: Recovery attempts allowed for this kind.
        strategy_name: Name of the strategy the scheduler executes.
    """

    can_recover: bool
    recovery_delay_ms: int = Field(default=0, ge=0)
    max_retries: int = Field(default=0, ge=0)
    strategy_name: str

    model_config = {"frozen": True}

    @property
    def recovery_delay_seconds(self) -> float:
        """Recovery delay expressed in seconds."""
        return self.recovery_delay_ms / 1000.0


class ErrorSignature(BaseModel):
    """
    Fingerprint of a single failure, used to detect repeats.

    Attributes:
        message: Raw failure message.
        stack_prefix: Bounded prefix of the failure's stack trace.
        kind: Classified ErrorKind.
        timestamp: Clock reading when the failure was recorded.
        context_stack_prefix: Bounded prefix of the host's component stack.
    """

    message: str
    stack_prefix: str = ""
    kind: ErrorKind
    timestamp: float
    context_stack_prefix: str = ""

    model_config = {"frozen": True}


# =============================================================================
# Circuit Breaker Models
# =============================================================================


class BreakerLevel(str, Enum):
    """Levels of the per-subject circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
    PERMANENT = "permanent"


class BreakerDecision(str, Enum):
    """Answer a breaker gives after recording a failure."""

    ALLOW = "allow"
    BLOCK = "block"
    PERMANENT = "permanent"


@dataclass
class CircuitBreakerState:
    """
    Mutable bookkeeping of one breaker.

    Times are readings of the breaker's clock (seconds); zero means "never".
    """

    history_size: int = 12
    level: BreakerLevel = BreakerLevel.CLOSED
    error_count: int = 0
    consecutive_errors: int = 0
    last_error_time: float = 0.0
    cooldown_end_time: float = 0.0
    last_cooldown_seconds: float = 0.0
    signature_history: deque = field(default_factory=deque, init=False)
    mount_attempts: int = 0
    last_mount_time: float = 0.0
    consecutive_mount_failures: int = 0
    recovery_count: int = 0
    last_recovery_attempt_time: float = 0.0
    mount_cycle_detected: bool = False
    permanent_reason: Optional[str] = None

    def __post_init__(self) -> None:
        self.signature_history = deque(maxlen=self.history_size)


class BreakerStatus(BaseModel):
    """
    Read-only view of a breaker, answered by status queries.

    Attributes:
        level: Effective level (an expired OPEN reads as HALF_OPEN).
        can_mount: Whether the backend may be mounted now.
        can_recover: Whether a recovery attempt may start now.
        should_fallback: Whether the host should move to another backend.
        cooldown_remaining: Seconds until an OPEN circuit probes again.
        recovery_wait_remaining: Seconds until the next recovery may start.
        error_count: Total errors recorded.
        consecutive_errors: Errors since the last successful recovery.
        mount_attempts: Mount notifications recorded.
    """

    level: BreakerLevel
    can_mount: bool
    can_recover: bool
    should_fallback: bool
    cooldown_remaining: float = 0.0
    recovery_wait_remaining: float = 0.0
    error_count: int = 0
    consecutive_errors: int = 0
    mount_attempts: int = 0

    model_config = {"frozen": True}


class DebugSnapshot(BaseModel):
    """Diagnostics view of a subject's active breaker."""

    subject_id: str
    backend_id: str
    level: BreakerLevel
    error_count: int
    mount_attempts: int
    cooldown_remaining: float
    signature_count: int = 0

    model_config = {"frozen": True}


# =============================================================================
# Backends
# =============================================================================


class DeviceCapabilities(BaseModel):
    """
    Result of a capability probe of the rendering device.

    Attribute names double as the capability names a BackendDescriptor
    may require.
    """

    webgl: bool = False
    webgl2: bool = False
    canvas2d: bool = True
    hardware_accelerated: bool = False
    headless: bool = False

    model_config = {"frozen": True}

    def supports(self, capability: str) -> bool:
        """Return True if the named capability is present."""
        return bool(getattr(self, capability, False))


class BackendDescriptor(BaseModel):
    """
    One interchangeable rendering backend.

    Attributes:
        id: Stable backend identifier (e.g. "webgl-3d").
        capability_tier: Fidelity ordinal, higher renders better.
        is_always_available: True if the backend works on any device.
        requires: Capability names the device must support.
    """

    id: str = Field(..., min_length=1)
    capability_tier: int = Field(..., ge=0)
    is_always_available: bool = False
    requires: frozenset[str] = Field(default_factory=frozenset)

    model_config = {"frozen": True}


# =============================================================================
# Orchestrator Output
# =============================================================================


EventType = Literal["fallback", "recovery", "permanent"]


class SupervisorEvent(BaseModel):
    """Observable event published to the host application."""

    type: EventType
    subject_id: str
    from_backend: Optional[str] = None
    to_backend: Optional[str] = None
    reason: str = ""
    timestamp: float = 0.0

    model_config = {"frozen": True}


class FailureAction(str, Enum):
    """What the orchestrator did in response to a failure."""

    RECOVERY_SCHEDULED = "recovery_scheduled"
    FALLBACK = "fallback"
    TERMINAL = "terminal"
    IGNORED = "ignored"


class FailureOutcome(BaseModel):
    """Result of routing one backend failure through the pipeline."""

    subject_id: str
    backend_id: str
    kind: ErrorKind
    decision: BreakerDecision
    action: FailureAction
    next_backend_id: Optional[str] = None
    reason: str = ""

    model_config = {"frozen": True}
