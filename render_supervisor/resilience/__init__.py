"""
Resilience patterns for Render Supervisor.

This module provides the pieces the orchestrator composes:
- classify / get_recovery_policy: Error taxonomy and recovery policy table
- ErrorSignatureTracker: Identical and similar repeat detection
- CircuitBreakerStateMachine: Per-subject, per-backend circuit breaker
- GlobalCircuitBreakerRegistry: Process-wide breaker registry
- MountCycleGuard: Rapid mount/unmount detection
- FallbackChainResolver: Ordered backend fallback with a guaranteed terminal
- RecoveryScheduler: Cancellable execution of recovery strategies
- Prometheus metrics for state transitions and fallbacks

Reference Documents:
- Building Reactive Microservices in Java (Escoffier): Circuit breaker pattern
- Release It! (Nygard): Stability patterns
"""

from render_supervisor.resilience.circuit_breaker_state_machine import (
    CircuitBreakerStateMachine,
)
from render_supervisor.resilience.classifier import (
    classify,
    classify_exception,
    explain,
)
from render_supervisor.resilience.fallback_chain import (
    FallbackChainResolver,
    default_backends,
)
from render_supervisor.resilience.metrics import (
    record_backend_failure,
    record_circuit_state_transition,
    record_fallback,
)
from render_supervisor.resilience.mount_cycle_guard import (
    MountCycleGuard,
    MountCycleVerdict,
)
from render_supervisor.resilience.recovery_policy import (
    RECOVERY_POLICIES,
    get_recovery_policy,
)
from render_supervisor.resilience.recovery_scheduler import (
    NoopRecoveryHooks,
    RecoveryHooks,
    RecoveryScheduler,
)
from render_supervisor.resilience.registry import (
    GlobalCircuitBreakerRegistry,
    get_registry,
    reset_registry,
)
from render_supervisor.resilience.signatures import (
    ErrorSignatureTracker,
    SignatureMatch,
)

__all__ = [
    # Classification
    "classify",
    "classify_exception",
    "explain",
    "RECOVERY_POLICIES",
    "get_recovery_policy",
    # Signatures
    "ErrorSignatureTracker",
    "SignatureMatch",
    # Circuit Breaker
    "CircuitBreakerStateMachine",
    "GlobalCircuitBreakerRegistry",
    "get_registry",
    "reset_registry",
    "MountCycleGuard",
    "MountCycleVerdict",
    # Fallback Chain
    "FallbackChainResolver",
    "default_backends",
    # Recovery
    "RecoveryHooks",
    "NoopRecoveryHooks",
    "RecoveryScheduler",
    # Metrics
    "record_circuit_state_transition",
    "record_backend_failure",
    "record_fallback",
]
