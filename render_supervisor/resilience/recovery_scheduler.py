"""
Recovery Scheduler

Times and executes named recovery strategies.

schedule() returns immediately with an asyncio.Task. The task waits for the
policy's recovery delay, then runs the strategy. Strategies delegate the
actual backend work (releasing caches, disabling a feature, remounting) to a
RecoveryHooks collaborator supplied by the host; the scheduler only knows
the order and the waits.

At most one recovery is in flight per subject. Scheduling again, cancel(),
or cancel_all() cancels the pending task; a cancelled task reports nothing.

Strategies:
    cleanup-and-retry   release cached resources, settle, retry
    retry-with-backoff  wait min(8s, 1s * 2^attempt), retry
    disable-feature     disable the failing feature, settle, retry
    fallback-materials  degrade materials, settle, retry
    retry-immediate     minimal wait, retry
    retry-once          minimal wait, retry
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from render_supervisor.core.config import Settings, get_settings
from render_supervisor.core.exceptions import RecoveryError
from render_supervisor.models.domain import RecoveryPolicy
from render_supervisor.observability.logging import get_logger, subject_context
from render_supervisor.resilience.metrics import (
    record_recovery_attempt,
    record_recovery_outcome,
)
from render_supervisor.resilience.recovery_policy import (
    STRATEGY_CLEANUP_AND_RETRY,
    STRATEGY_DISABLE_FEATURE,
    STRATEGY_FALLBACK_MATERIALS,
    STRATEGY_RETRY_IMMEDIATE,
    STRATEGY_RETRY_ONCE,
    STRATEGY_RETRY_WITH_BACKOFF,
)

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

CLEANUP_SETTLE_SECONDS = 1.0
FEATURE_SETTLE_SECONDS = 0.5
MATERIAL_SETTLE_SECONDS = 1.0
MINIMAL_WAIT_SECONDS = 0.1
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 8.0

FEATURE_ANIMATION = "animation"

SuccessCallback = Callable[[str, str], Awaitable[None]]
FailureCallback = Callable[[str, BaseException], Awaitable[None]]
Sleep = Callable[[float], Awaitable[Any]]


# =============================================================================
# Hooks
# =============================================================================


class RecoveryHooks(Protocol):
    """Backend-side operations the strategies rely on."""

    async def release_resources(self, subject_id: str) -> None:
        """Drop cached assets and GPU resources held for the subject."""

    async def disable_feature(self, subject_id: str, feature: str) -> None:
        """Turn off one optional capability (e.g. animation)."""

    async def degrade_materials(self, subject_id: str) -> None:
        """Swap materials/textures for simpler fallbacks."""

    async def retry(self, subject_id: str) -> None:
        """Remount the backend; raise if it still fails."""


class NoopRecoveryHooks:
    """Hooks for hosts whose backends recover by simply being remounted."""

    async def release_resources(self, subject_id: str) -> None:
        return None

    async def disable_feature(self, subject_id: str, feature: str) -> None:
        return None

    async def degrade_materials(self, subject_id: str) -> None:
        return None

    async def retry(self, subject_id: str) -> None:
        return None


# =============================================================================
# Scheduler
# =============================================================================


class RecoveryScheduler:
    """
    Cancellable, per-subject recovery execution.

    Example:
        >>> scheduler = RecoveryScheduler(hooks=my_hooks)
        >>> scheduler.schedule("hero", policy, attempt=0,
        ...                    on_success=done, on_failure=failed)
    """

    def __init__(
        self,
        hooks: Optional[RecoveryHooks] = None,
        settings: Optional[Settings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize RecoveryScheduler.

        Args:
            hooks: Backend collaborator (default: NoopRecoveryHooks)
            settings: Application settings
            sleep: Awaitable sleep, injectable for tests
        """
        self._hooks: RecoveryHooks = hooks or NoopRecoveryHooks()
        self._settings = settings or get_settings()
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self._strategies: Dict[str, Callable[[str, int], Awaitable[None]]] = {
            STRATEGY_CLEANUP_AND_RETRY: self._cleanup_and_retry,
            STRATEGY_RETRY_WITH_BACKOFF: self._retry_with_backoff,
            STRATEGY_DISABLE_FEATURE: self._disable_feature,
            STRATEGY_FALLBACK_MATERIALS: self._fallback_materials,
            STRATEGY_RETRY_IMMEDIATE: self._simple_retry,
            STRATEGY_RETRY_ONCE: self._simple_retry,
        }

    @property
    def strategies(self) -> list[str]:
        return list(self._strategies)

    def is_pending(self, subject_id: str) -> bool:
        task = self._tasks.get(subject_id)
        return task is not None and not task.done()

    def schedule(
        self,
        subject_id: str,
        policy: RecoveryPolicy,
        attempt: int,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        delay: Optional[float] = None,
    ) -> asyncio.Task:
        """
        Schedule a recovery and return immediately.

        Any recovery already pending for the subject is cancelled first.

        Args:
            subject_id: Subject to recover
            policy: Policy row naming the strategy and delay
            attempt: Zero-based recovery attempt number for this backend
            on_success: Awaited with (subject_id, strategy_name) on success
            on_failure: Awaited with (subject_id, error) on failure
            delay: Override of the policy delay in seconds

        Returns:
            The asyncio.Task running the recovery

        Raises:
            RecoveryError: If the policy is not recoverable or names an
                unknown strategy
        """
        if not policy.can_recover:
            raise RecoveryError(
                f"Policy '{policy.strategy_name}' is not recoverable",
                subject_id=subject_id,
                strategy_name=policy.strategy_name,
            )
        if policy.strategy_name not in self._strategies:
            raise RecoveryError(
                f"Unknown recovery strategy '{policy.strategy_name}'",
                subject_id=subject_id,
                strategy_name=policy.strategy_name,
            )

        self.cancel(subject_id)
        wait = policy.recovery_delay_seconds if delay is None else delay
        task = asyncio.create_task(
            self._run(subject_id, policy.strategy_name, attempt, wait, on_success, on_failure),
            name=f"recovery:{subject_id}",
        )
        self._tasks[subject_id] = task

        logger.info(
            "recovery scheduled",
            subject_id=subject_id,
            strategy=policy.strategy_name,
            attempt=attempt,
            delay_seconds=wait,
        )
        if self._settings.metrics_enabled:
            record_recovery_attempt(policy.strategy_name)
        return task

    def cancel(self, subject_id: str) -> bool:
        """
        Cancel the pending recovery of a subject.

        Returns:
            True if a pending task was cancelled
        """
        task = self._tasks.pop(subject_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("recovery cancelled", subject_id=subject_id)
        return True

    def cancel_all(self) -> int:
        """Cancel every pending recovery; returns how many were cancelled."""
        return sum(1 for subject_id in list(self._tasks) if self.cancel(subject_id))

    # =========================================================================
    # Execution
    # =========================================================================

    async def _run(
        self,
        subject_id: str,
        strategy_name: str,
        attempt: int,
        delay: float,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
    ) -> None:
        with subject_context(subject_id):
            try:
                await self._sleep(delay)
                logger.info(
                    "recovery attempt started",
                    strategy=strategy_name,
                    attempt=attempt,
                )
                await self._strategies[strategy_name](subject_id, attempt)
            except asyncio.CancelledError:
                if self._settings.metrics_enabled:
                    record_recovery_outcome(strategy_name, "cancelled")
                raise
            except Exception as e:
                self._release(subject_id)
                logger.warning(
                    "recovery attempt failed",
                    strategy=strategy_name,
                    attempt=attempt,
                    error=str(e),
                )
                if self._settings.metrics_enabled:
                    record_recovery_outcome(strategy_name, "failure")
                await on_failure(subject_id, e)
                return

            self._release(subject_id)
            logger.info("recovery attempt succeeded", strategy=strategy_name)
            if self._settings.metrics_enabled:
                record_recovery_outcome(strategy_name, "success")
            await on_success(subject_id, strategy_name)

    def _release(self, subject_id: str) -> None:
        # callbacks may schedule a new recovery for the same subject
        if self._tasks.get(subject_id) is asyncio.current_task():
            del self._tasks[subject_id]

    # =========================================================================
    # Strategies
    # =========================================================================

    async def _cleanup_and_retry(self, subject_id: str, attempt: int) -> None:
        await self._hooks.release_resources(subject_id)
        await self._sleep(CLEANUP_SETTLE_SECONDS)
        await self._hooks.retry(subject_id)

    async def _retry_with_backoff(self, subject_id: str, attempt: int) -> None:
        await self._sleep(backoff_delay(attempt))
        await self._hooks.retry(subject_id)

    async def _disable_feature(self, subject_id: str, attempt: int) -> None:
        await self._hooks.disable_feature(subject_id, FEATURE_ANIMATION)
        await self._sleep(FEATURE_SETTLE_SECONDS)
        await self._hooks.retry(subject_id)

    async def _fallback_materials(self, subject_id: str, attempt: int) -> None:
        await self._hooks.degrade_materials(subject_id)
        await self._sleep(MATERIAL_SETTLE_SECONDS)
        await self._hooks.retry(subject_id)

    async def _simple_retry(self, subject_id: str, attempt: int) -> None:
        await self._sleep(MINIMAL_WAIT_SECONDS)
        await self._hooks.retry(subject_id)


def backoff_delay(attempt: int) -> float:
    """Backoff wait of retry-with-backoff for a zero-based attempt number."""
    return min(BACKOFF_CAP_SECONDS, BACKOFF_BASE_SECONDS * (2 ** max(attempt, 0)))
