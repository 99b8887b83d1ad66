"""
Resilience Metrics

This module provides Prometheus metrics for the circuit breakers, the
fallback chain, the recovery scheduler and the mount-cycle guard.

Metrics Provided:
- Circuit breaker state transitions (counter) and current level (gauge)
- Classified backend failures by kind (counter)
- Backend fallbacks (counter)
- Recovery attempts and outcomes by strategy (counter)
- Mount cycles detected (counter)

Labels are backend ids, kinds and strategy names only. Subject ids are
unbounded, so they stay in the logs and out of the label sets.
"""

from prometheus_client import Counter, Gauge

# =============================================================================
# Constants
# =============================================================================

METRIC_CIRCUIT_TRANSITIONS = "render_supervisor_circuit_breaker_state_transitions_total"
METRIC_CIRCUIT_STATE = "render_supervisor_circuit_breaker_state"
METRIC_FAILURES = "render_supervisor_backend_failures_total"
METRIC_FALLBACKS = "render_supervisor_fallbacks_total"
METRIC_RECOVERY_ATTEMPTS = "render_supervisor_recovery_attempts_total"
METRIC_RECOVERY_OUTCOMES = "render_supervisor_recovery_outcomes_total"
METRIC_MOUNT_CYCLES = "render_supervisor_mount_cycles_detected_total"


# =============================================================================
# Circuit Breaker State Transition Metrics
# =============================================================================

CIRCUIT_STATE_TRANSITIONS = Counter(
    name=METRIC_CIRCUIT_TRANSITIONS,
    documentation="Total number of circuit breaker state transitions",
    labelnames=["backend", "to_state", "from_state"],
)

CIRCUIT_STATE_GAUGE = Gauge(
    name=METRIC_CIRCUIT_STATE,
    documentation=(
        "Level of the most recently transitioned breaker per backend "
        "(0=closed, 1=half_open, 2=open, 3=permanent)"
    ),
    labelnames=["backend"],
)

_STATE_TO_NUMERIC = {
    "closed": 0,
    "half_open": 1,
    "open": 2,
    "permanent": 3,
}


def record_circuit_state_transition(
    backend: str,
    to_state: str,
    from_state: str,
) -> None:
    """
    Record a circuit breaker state transition.

    Args:
        backend: Backend id the breaker guards
        to_state: State transitioning to
        from_state: State transitioning from
    """
    CIRCUIT_STATE_TRANSITIONS.labels(
        backend=backend,
        to_state=to_state,
        from_state=from_state,
    ).inc()

    CIRCUIT_STATE_GAUGE.labels(backend=backend).set(
        _STATE_TO_NUMERIC.get(to_state, 0)
    )


# =============================================================================
# Failure / Fallback Metrics
# =============================================================================

BACKEND_FAILURES = Counter(
    name=METRIC_FAILURES,
    documentation="Total number of backend failures by classified kind",
    labelnames=["backend", "kind", "decision"],
)

FALLBACKS = Counter(
    name=METRIC_FALLBACKS,
    documentation="Total number of backend swaps",
    labelnames=["from_backend", "to_backend"],
)


def record_backend_failure(backend: str, kind: str, decision: str) -> None:
    """Record one classified backend failure and the breaker's decision."""
    BACKEND_FAILURES.labels(backend=backend, kind=kind, decision=decision).inc()


def record_fallback(from_backend: str, to_backend: str) -> None:
    """Record a swap from one backend to the next in the chain."""
    FALLBACKS.labels(from_backend=from_backend, to_backend=to_backend).inc()


# =============================================================================
# Recovery Metrics
# =============================================================================

RECOVERY_ATTEMPTS = Counter(
    name=METRIC_RECOVERY_ATTEMPTS,
    documentation="Total number of scheduled recovery attempts",
    labelnames=["strategy"],
)

RECOVERY_OUTCOMES = Counter(
    name=METRIC_RECOVERY_OUTCOMES,
    documentation="Total number of finished recovery attempts by outcome",
    labelnames=["strategy", "outcome"],
)

MOUNT_CYCLES = Counter(
    name=METRIC_MOUNT_CYCLES,
    documentation="Total number of mount/unmount cycles detected",
    labelnames=["scope"],
)


def record_recovery_attempt(strategy: str) -> None:
    """Record that a recovery strategy was scheduled."""
    RECOVERY_ATTEMPTS.labels(strategy=strategy).inc()


def record_recovery_outcome(strategy: str, outcome: str) -> None:
    """
    Record how a recovery attempt ended.

    Args:
        strategy: Strategy name
        outcome: "success", "failure" or "cancelled"
    """
    RECOVERY_OUTCOMES.labels(strategy=strategy, outcome=outcome).inc()


def record_mount_cycle(scope: str) -> None:
    """Record a detected mount cycle ("subject" or "global")."""
    MOUNT_CYCLES.labels(scope=scope).inc()
