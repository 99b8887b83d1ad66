"""
Global Circuit Breaker Registry

Process-wide map of (subject id, backend id) to circuit breaker.

Many short-lived component instances of the same subject can be created and
destroyed in quick succession. If each kept its own breaker they would each
retry independently and collectively storm a broken backend. The registry
keeps one breaker per subject and backend for the whole process, so every
instance of a subject sees the same history.

The registry is an explicitly constructed service: components receive it by
injection, and tests build a fresh one (or call reset_registry()) instead of
sharing module state.

Thread Safety:
    Each key has its own asyncio.Lock; every read-modify-write of a breaker
    runs under that lock. Status queries are lock-free reads.
"""

import asyncio
import time
from typing import Callable, Optional

from render_supervisor.core.config import Settings, get_settings
from render_supervisor.models.domain import (
    BreakerDecision,
    BreakerLevel,
    BreakerStatus,
    DebugSnapshot,
    ErrorSignature,
)
from render_supervisor.observability.logging import get_logger
from render_supervisor.resilience.circuit_breaker_state_machine import (
    CircuitBreakerStateMachine,
)
from render_supervisor.resilience.signatures import ErrorSignatureTracker

logger = get_logger(__name__)

BreakerKey = tuple[str, str]


class GlobalCircuitBreakerRegistry:
    """
    Registry of circuit breakers keyed by subject and backend.

    Breakers are created lazily on first use and live until reset_subject(),
    reset_all() or process exit. Abandoned backends keep their breaker, so a
    subject that returns to a backend remembers its earlier failures.

    Example:
        >>> registry = GlobalCircuitBreakerRegistry()
        >>> decision = await registry.record_error("hero", "webgl-3d", sig)
        >>> registry.status("hero", "webgl-3d").can_recover
        True
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._tracker = ErrorSignatureTracker(self._settings)
        self._breakers: dict[BreakerKey, CircuitBreakerStateMachine] = {}
        self._locks: dict[BreakerKey, asyncio.Lock] = {}

    # =========================================================================
    # Breaker Access
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def tracker(self) -> ErrorSignatureTracker:
        return self._tracker

    @property
    def clock(self) -> Callable[[], float]:
        """Clock shared by every breaker; signatures must use it too."""
        return self._clock

    def breaker(self, subject_id: str, backend_id: str) -> CircuitBreakerStateMachine:
        """Return the breaker for a key, creating it on first use."""
        key = (subject_id, backend_id)
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreakerStateMachine(
                subject_id,
                backend_id,
                settings=self._settings,
                tracker=self._tracker,
                clock=self._clock,
            )
            self._breakers[key] = breaker
            logger.debug("circuit breaker created", subject_id=subject_id, backend=backend_id)
        return breaker

    def has(self, subject_id: str, backend_id: str) -> bool:
        """Whether a breaker exists for the key."""
        return (subject_id, backend_id) in self._breakers

    def keys(self) -> list[BreakerKey]:
        return list(self._breakers)

    def _lock(self, subject_id: str, backend_id: str) -> asyncio.Lock:
        key = (subject_id, backend_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # =========================================================================
    # Atomic Updates
    # =========================================================================

    async def record_error(
        self, subject_id: str, backend_id: str, signature: ErrorSignature
    ) -> BreakerDecision:
        """Record a failure and return the breaker's decision."""
        async with self._lock(subject_id, backend_id):
            return self.breaker(subject_id, backend_id).record_error(signature)

    async def record_successful_recovery(
        self, subject_id: str, backend_id: str
    ) -> BreakerLevel:
        async with self._lock(subject_id, backend_id):
            return self.breaker(subject_id, backend_id).record_successful_recovery()

    async def record_failed_recovery(
        self, subject_id: str, backend_id: str
    ) -> BreakerLevel:
        async with self._lock(subject_id, backend_id):
            return self.breaker(subject_id, backend_id).record_failed_recovery()

    async def record_recovery_attempt(self, subject_id: str, backend_id: str) -> None:
        async with self._lock(subject_id, backend_id):
            self.breaker(subject_id, backend_id).record_recovery_attempt()

    async def record_mount(self, subject_id: str, backend_id: str) -> None:
        async with self._lock(subject_id, backend_id):
            self.breaker(subject_id, backend_id).record_mount()

    async def force_permanent(
        self,
        subject_id: str,
        backend_id: str,
        reason: str,
        mount_cycle: bool = False,
    ) -> bool:
        """Force a breaker to PERMANENT; True if it was not already."""
        async with self._lock(subject_id, backend_id):
            return self.breaker(subject_id, backend_id).force_permanent(
                reason, mount_cycle=mount_cycle
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def status(self, subject_id: str, backend_id: str) -> BreakerStatus:
        return self.breaker(subject_id, backend_id).status()

    def snapshot(self, subject_id: str, backend_id: str) -> DebugSnapshot:
        return self.breaker(subject_id, backend_id).snapshot()

    def ensure_can_mount(self, subject_id: str, backend_id: str) -> None:
        """
        Raise CircuitBreakerError if the backend may not be mounted.

        Raises:
            CircuitBreakerError: If the circuit is OPEN or PERMANENT
        """
        self.breaker(subject_id, backend_id).ensure_can_mount()

    # =========================================================================
    # Reset
    # =========================================================================

    def reset_subject(self, subject_id: str) -> int:
        """
        Drop every breaker of a subject.

        Returns:
            Number of breakers removed
        """
        keys = [key for key in self._breakers if key[0] == subject_id]
        for key in keys:
            self._breakers.pop(key).reset()
            self._locks.pop(key, None)
        if keys:
            logger.info("subject breakers reset", subject_id=subject_id, count=len(keys))
        return len(keys)

    def reset_all(self) -> None:
        """Drop every breaker in the registry."""
        count = len(self._breakers)
        for breaker in self._breakers.values():
            breaker.reset()
        self._breakers.clear()
        self._locks.clear()
        logger.info("circuit breaker registry reset", count=count)


# =============================================================================
# Process-wide Default
# =============================================================================

_default_registry: Optional[GlobalCircuitBreakerRegistry] = None


def get_registry() -> GlobalCircuitBreakerRegistry:
    """
    Return the process-wide registry, constructing it on first use.

    Hosts that need a custom clock or settings construct their own
    GlobalCircuitBreakerRegistry and inject it instead.
    """
    global _default_registry
    if _default_registry is None:
        _default_registry = GlobalCircuitBreakerRegistry()
    return _default_registry


def reset_registry() -> None:
    """
    Discard the process-wide registry.

    WARNING: This should only be used in tests.
    """
    global _default_registry
    if _default_registry is not None:
        _default_registry.reset_all()
    _default_registry = None
