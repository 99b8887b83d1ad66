"""
Circuit Breaker State Machine

This module implements the per-subject circuit breaker that gates retries of
one rendering backend for one supervised subject.

Reference Documents:
- Building Reactive Microservices in Java (Escoffier) Ch.6, pp.54-62
- Release It! (Nygard): Stability patterns

State Machine:
    CLOSED: Normal operation, recoverable failures are retried
    OPEN: Circuit tripped, failures are recorded but answered BLOCK
    HALF_OPEN: Cooldown expired, the next signal decides
    PERMANENT: Terminal, cleared only by an explicit reset

Transitions:
    CLOSED    -> OPEN       identical repeats or consecutive errors reach
                            their open thresholds
    any       -> PERMANENT  identical/similar repeats reach their permanent
                            thresholds, failed recoveries reach their limit,
                            or a mount cycle is reported
    OPEN      -> HALF_OPEN  cooldown expired (evaluated lazily) or a
                            recovery success arrives
    HALF_OPEN -> OPEN       any new error, with an escalated cooldown
    HALF_OPEN -> CLOSED     successes bring consecutive errors to zero

Every operation reads the clock itself; the class is synchronous and holds
no lock. GlobalCircuitBreakerRegistry serialises access per key.
"""

import time
from typing import Callable, Optional

from render_supervisor.core.config import Settings, get_settings
from render_supervisor.core.exceptions import CircuitBreakerError
from render_supervisor.models.domain import (
    BreakerDecision,
    BreakerLevel,
    BreakerStatus,
    CircuitBreakerState,
    DebugSnapshot,
    ErrorSignature,
)
from render_supervisor.observability.logging import get_logger
from render_supervisor.resilience.metrics import record_circuit_state_transition
from render_supervisor.resilience.signatures import ErrorSignatureTracker

logger = get_logger(__name__)

Clock = Callable[[], float]


class CircuitBreakerStateMachine:
    """
    Circuit breaker for one (subject, backend) pair.

    The breaker combines content-based repeat detection (error signatures)
    with structural input (mount cycles, failed recoveries) into one
    transition function.

    Example:
        >>> breaker = CircuitBreakerStateMachine("hero", "webgl-3d")
        >>> decision = breaker.record_error(signature)
        >>> if decision is BreakerDecision.ALLOW:
        ...     schedule_recovery()

    Attributes:
        subject_id: Supervised subject
        backend_id: Backend the breaker guards
    """

    def __init__(
        self,
        subject_id: str,
        backend_id: str,
        settings: Optional[Settings] = None,
        tracker: Optional[ErrorSignatureTracker] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """
        Initialize CircuitBreakerStateMachine.

        Args:
            subject_id: Supervised subject
            backend_id: Backend the breaker guards
            settings: Threshold configuration (default: get_settings())
            tracker: Signature comparison helper
            clock: Monotonic clock in seconds
        """
        self._subject_id = subject_id
        self._backend_id = backend_id
        self._settings = settings or get_settings()
        self._tracker = tracker or ErrorSignatureTracker(self._settings)
        self._clock = clock
        self._state = CircuitBreakerState(
            history_size=self._settings.signature_history_size
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def subject_id(self) -> str:
        return self._subject_id

    @property
    def backend_id(self) -> str:
        return self._backend_id

    @property
    def name(self) -> str:
        """Name used in logs."""
        return f"{self._subject_id}/{self._backend_id}"

    @property
    def level(self) -> BreakerLevel:
        """
        Stored level of the breaker.

        Note: an expired OPEN is only promoted to HALF_OPEN by the next
        operation. status() reports the effective level.
        """
        return self._state.level

    @property
    def state(self) -> CircuitBreakerState:
        """Bookkeeping of the breaker, for diagnostics."""
        return self._state

    @property
    def consecutive_errors(self) -> int:
        return self._state.consecutive_errors

    @property
    def error_count(self) -> int:
        return self._state.error_count

    @property
    def is_permanent(self) -> bool:
        return self._state.level is BreakerLevel.PERMANENT

    # =========================================================================
    # Transitions
    # =========================================================================

    def _transition(self, to_level: BreakerLevel, **context: object) -> None:
        old_level = self._state.level
        if old_level is to_level:
            return
        self._state.level = to_level

        log = logger.error if to_level is BreakerLevel.PERMANENT else logger.warning
        if to_level in (BreakerLevel.CLOSED, BreakerLevel.HALF_OPEN):
            log = logger.info
        log(
            "circuit breaker transition",
            subject_id=self._subject_id,
            backend=self._backend_id,
            from_level=old_level.value,
            to_level=to_level.value,
            **context,
        )
        if self._settings.metrics_enabled:
            record_circuit_state_transition(
                self._backend_id, to_level.value, old_level.value
            )

    def _refresh(self, now: float) -> None:
        """Promote an expired OPEN circuit to HALF_OPEN."""
        if (
            self._state.level is BreakerLevel.OPEN
            and now >= self._state.cooldown_end_time
        ):
            self._transition(BreakerLevel.HALF_OPEN, reason="cooldown expired")

    def _next_cooldown(self, base_seconds: float) -> float:
        """
        Compute the next cooldown.

        cooldown = min(cap, base * 2^(consecutive - 1)), and never less than
        the previous cooldown times the escalation factor (also capped), so
        cooldowns of an unresolved subject never shrink.
        """
        settings = self._settings
        exponent = max(self._state.consecutive_errors, 1) - 1
        cooldown = base_seconds * (2 ** exponent)
        if self._state.last_cooldown_seconds > 0:
            cooldown = max(
                cooldown,
                self._state.last_cooldown_seconds * settings.cooldown_escalation_factor,
            )
        return min(settings.max_cooldown_seconds, cooldown)

    def _open(self, now: float, base_seconds: float, reason: str) -> None:
        cooldown = self._next_cooldown(base_seconds)
        self._state.last_cooldown_seconds = cooldown
        self._state.cooldown_end_time = now + cooldown
        self._transition(
            BreakerLevel.OPEN,
            reason=reason,
            cooldown_seconds=cooldown,
            consecutive_errors=self._state.consecutive_errors,
        )

    def _make_permanent(self, reason: str) -> bool:
        if self._state.level is BreakerLevel.PERMANENT:
            return False
        self._state.permanent_reason = reason
        self._state.cooldown_end_time = 0.0
        self._transition(BreakerLevel.PERMANENT, reason=reason)
        return True

    # =========================================================================
    # Recording
    # =========================================================================

    def record_error(self, signature: ErrorSignature) -> BreakerDecision:
        """
        Record a backend failure and decide what the caller may do.

        Args:
            signature: Fingerprint of the failure

        Returns:
            ALLOW when the circuit stays CLOSED, BLOCK when it is (or just
            became) OPEN, PERMANENT when the circuit is terminal
        """
        now = self._clock()
        self._refresh(now)
        state = self._state

        state.signature_history.append(signature)
        state.error_count += 1
        state.consecutive_errors += 1
        state.last_error_time = now

        if state.level is BreakerLevel.PERMANENT:
            return BreakerDecision.PERMANENT

        match = self._tracker.count_matches(signature, state.signature_history, now)
        settings = self._settings

        if (
            match.identical >= settings.permanent_identical_threshold
            or match.similar >= settings.permanent_similar_threshold
        ):
            self._make_permanent(
                f"critical error pattern (identical={match.identical}, "
                f"similar={match.similar})"
            )
            return BreakerDecision.PERMANENT

        if state.level is BreakerLevel.CLOSED:
            if (
                match.identical >= settings.open_identical_threshold
                or state.consecutive_errors >= settings.open_consecutive_threshold
            ):
                self._open(
                    now,
                    settings.base_cooldown_seconds,
                    reason=(
                        f"error threshold reached (identical={match.identical}, "
                        f"consecutive={state.consecutive_errors})"
                    ),
                )
                return BreakerDecision.BLOCK
            return BreakerDecision.ALLOW

        if state.level is BreakerLevel.HALF_OPEN:
            self._open(
                now, settings.half_open_base_cooldown_seconds, reason="probe failed"
            )
            return BreakerDecision.BLOCK

        logger.debug(
            "circuit open, failure recorded during cooldown",
            subject_id=self._subject_id,
            backend=self._backend_id,
            cooldown_remaining=max(0.0, state.cooldown_end_time - now),
        )
        return BreakerDecision.BLOCK

    def record_successful_recovery(self) -> BreakerLevel:
        """
        Credit a successful recovery.

        Decrements consecutive errors (floor 0) and the total error count.
        A success reported while OPEN is still cooling down is ignored; the
        circuit only leaves OPEN when the cooldown expires. HALF_OPEN closes
        once consecutive errors reach 0.

        Returns:
            Level after the update
        """
        now = self._clock()
        self._refresh(now)
        state = self._state
        if state.level is BreakerLevel.PERMANENT:
            return state.level
        if state.level is BreakerLevel.OPEN:
            logger.debug(
                "circuit open, recovery success ignored during cooldown",
                subject_id=self._subject_id,
                backend=self._backend_id,
                cooldown_remaining=max(0.0, state.cooldown_end_time - now),
            )
            return state.level

        state.consecutive_errors = max(0, state.consecutive_errors - 1)
        state.error_count = max(0, state.error_count - 1)
        state.consecutive_mount_failures = 0

        if state.level is BreakerLevel.HALF_OPEN and state.consecutive_errors == 0:
            self._transition(BreakerLevel.CLOSED, reason="recovery succeeded")
        return state.level

    def record_failed_recovery(self) -> BreakerLevel:
        """
        Count a failed recovery; too many in a row make the circuit PERMANENT.

        Returns:
            Level after the update
        """
        now = self._clock()
        self._refresh(now)
        state = self._state
        if state.level is BreakerLevel.PERMANENT:
            return state.level

        state.consecutive_mount_failures += 1
        if state.consecutive_mount_failures >= self._settings.max_failed_recoveries:
            self._make_permanent(
                f"recovery failed {state.consecutive_mount_failures} times"
            )
        return state.level

    def record_recovery_attempt(self) -> None:
        """Note that a recovery attempt was started now."""
        self._state.recovery_count += 1
        self._state.last_recovery_attempt_time = self._clock()

    def record_mount(self) -> None:
        """Note a mount of the guarded backend."""
        self._state.mount_attempts += 1
        self._state.last_mount_time = self._clock()

    def force_permanent(self, reason: str, mount_cycle: bool = False) -> bool:
        """
        Move to PERMANENT regardless of the current level.

        Args:
            reason: Why the circuit is being made terminal
            mount_cycle: True when the cause is a detected mount cycle

        Returns:
            True if the circuit was not already PERMANENT
        """
        if mount_cycle:
            self._state.mount_cycle_detected = True
        return self._make_permanent(reason)

    def reset(self) -> None:
        """Forget all history and return to CLOSED."""
        old_level = self._state.level
        self._state = CircuitBreakerState(
            history_size=self._settings.signature_history_size
        )
        if old_level is not BreakerLevel.CLOSED:
            logger.info(
                "circuit breaker reset",
                subject_id=self._subject_id,
                backend=self._backend_id,
                from_level=old_level.value,
            )
            if self._settings.metrics_enabled:
                record_circuit_state_transition(
                    self._backend_id, BreakerLevel.CLOSED.value, old_level.value
                )

    # =========================================================================
    # Queries
    # =========================================================================

    def _effective_level(self, now: float) -> BreakerLevel:
        state = self._state
        if state.level is BreakerLevel.OPEN and now >= state.cooldown_end_time:
            return BreakerLevel.HALF_OPEN
        return state.level

    def recovery_wait_remaining(self, now: Optional[float] = None) -> float:
        """
        Seconds until the minimum inter-recovery interval has elapsed.

        The interval is min(cap, base * 2^recovery_count), measured from the
        last attempt; there is no wait before the first one.
        """
        now = self._clock() if now is None else now
        state = self._state
        if state.recovery_count == 0:
            return 0.0
        settings = self._settings
        interval = min(
            settings.recovery_interval_cap_seconds,
            settings.recovery_interval_base_seconds * (2 ** state.recovery_count),
        )
        return max(0.0, state.last_recovery_attempt_time + interval - now)

    def status(self) -> BreakerStatus:
        """
        Return a read-only status view.

        The query does not mutate the breaker; between events only the
        remaining-time fields change.
        """
        now = self._clock()
        state = self._state
        level = self._effective_level(now)
        cooldown_remaining = (
            max(0.0, state.cooldown_end_time - now)
            if level is BreakerLevel.OPEN
            else 0.0
        )
        recovery_wait = self.recovery_wait_remaining(now)
        can_recover = (
            level is not BreakerLevel.PERMANENT
            and level is not BreakerLevel.OPEN
            and not state.mount_cycle_detected
            and recovery_wait == 0.0
        )
        return BreakerStatus(
            level=level,
            can_mount=level in (BreakerLevel.CLOSED, BreakerLevel.HALF_OPEN),
            can_recover=can_recover,
            should_fallback=level in (BreakerLevel.OPEN, BreakerLevel.PERMANENT),
            cooldown_remaining=cooldown_remaining,
            recovery_wait_remaining=recovery_wait,
            error_count=state.error_count,
            consecutive_errors=state.consecutive_errors,
            mount_attempts=state.mount_attempts,
        )

    def snapshot(self) -> DebugSnapshot:
        """Return the diagnostics view of this breaker."""
        status = self.status()
        return DebugSnapshot(
            subject_id=self._subject_id,
            backend_id=self._backend_id,
            level=status.level,
            error_count=status.error_count,
            mount_attempts=status.mount_attempts,
            cooldown_remaining=status.cooldown_remaining,
            signature_count=len(self._state.signature_history),
        )

    def ensure_can_mount(self) -> None:
        """
        Raise if the backend may not be mounted now.

        Raises:
            CircuitBreakerError: If the circuit is OPEN or PERMANENT
        """
        status = self.status()
        if not status.can_mount:
            raise CircuitBreakerError(
                self._subject_id,
                self._backend_id,
                status.level.value,
                cooldown_remaining=status.cooldown_remaining,
            )
