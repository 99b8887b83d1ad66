"""
Renderer Orchestrator

Owns the active backend of every supervised subject and routes backend
failures through the resilience pipeline:

    failure → classify → signature → breaker decision
        ALLOW + recoverable + budget left → scheduled recovery
        otherwise                         → next backend in the chain

Recovery success credits the breaker and keeps the backend; recovery failure
counts against the breaker and re-enters the pipeline as a new failure.
Every backend swap publishes a "fallback" event; a breaker turning
PERMANENT publishes one "permanent" event; a successful recovery publishes
a "recovery" event.

Concurrency:
    Events of one subject (failures, mounts, unmounts, recovery results)
    are serialised by a per-subject asyncio.Lock. Recovery bodies run as
    separate tasks and take the lock again only to report back.
"""

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable, Mapping, Optional, Union

from render_supervisor.core.config import Settings, get_settings
from render_supervisor.models.domain import (
    BackendDescriptor,
    BreakerDecision,
    BreakerLevel,
    BreakerStatus,
    DebugSnapshot,
    DeviceCapabilities,
    ErrorKind,
    FailureAction,
    FailureOutcome,
    RecoveryPolicy,
    SupervisorEvent,
)
from render_supervisor.observability.logging import get_logger, subject_context
from render_supervisor.resilience.classifier import classify, explain
from render_supervisor.resilience.fallback_chain import (
    FallbackChainResolver,
    default_backends,
)
from render_supervisor.resilience.metrics import record_backend_failure, record_fallback
from render_supervisor.resilience.mount_cycle_guard import MountCycleGuard
from render_supervisor.resilience.recovery_policy import (
    STRATEGY_RETRY_IMMEDIATE,
    get_recovery_policy,
)
from render_supervisor.resilience.recovery_scheduler import (
    RecoveryHooks,
    RecoveryScheduler,
)
from render_supervisor.resilience.registry import (
    GlobalCircuitBreakerRegistry,
    get_registry,
)
from render_supervisor.resilience.signatures import format_stack

logger = get_logger(__name__)

EventListener = Callable[[SupervisorEvent], None]
CapabilityProbe = Callable[[], DeviceCapabilities]

CONTEXT_STACK = "stack"
CONTEXT_COMPONENT_STACK = "component_stack"
CONTEXT_BACKEND_ID = "backend_id"

DEFAULT_EVENT_HISTORY = 256

MANUAL_RETRY_POLICY = RecoveryPolicy(
    can_recover=True,
    recovery_delay_ms=0,
    max_retries=1,
    strategy_name=STRATEGY_RETRY_IMMEDIATE,
)


@dataclass
class _SubjectSession:
    """Per-subject transient state held by the orchestrator."""

    subject_id: str
    active_backend_id: str
    retry_count: int = 0
    last_failure: Optional[FailureOutcome] = None
    fallback_history: list = field(default_factory=list)
    permanent_reported: set = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _describe(raw_error: Union[BaseException, str], context: Mapping[str, Any]) -> tuple[str, str]:
    """Extract message and stack text from a raw failure."""
    if isinstance(raw_error, BaseException):
        message = str(raw_error) or type(raw_error).__name__
        stack = format_stack(raw_error) or str(context.get(CONTEXT_STACK, ""))
        return message, stack
    return str(raw_error), str(context.get(CONTEXT_STACK, ""))


class RendererOrchestrator:
    """
    Active backend selection with failure routing.

    Example:
        >>> orchestrator = RendererOrchestrator.from_probe(probe_device)
        >>> backend = await orchestrator.on_mount("hero")
        >>> outcome = await orchestrator.on_backend_failure("hero", error)
        >>> orchestrator.active_backend("hero").id
        'canvas-2d'
    """

    def __init__(
        self,
        chain: FallbackChainResolver,
        registry: Optional[GlobalCircuitBreakerRegistry] = None,
        scheduler: Optional[RecoveryScheduler] = None,
        mount_guard: Optional[MountCycleGuard] = None,
        settings: Optional[Settings] = None,
        hooks: Optional[RecoveryHooks] = None,
        event_history_size: int = DEFAULT_EVENT_HISTORY,
    ) -> None:
        """
        Initialize RendererOrchestrator.

        Args:
            chain: Fallback chain built for this session
            registry: Breaker registry (default: process-wide registry)
            scheduler: Recovery scheduler (default: one using hooks)
            mount_guard: Mount-cycle guard (default: one on the registry clock)
            settings: Application settings
            hooks: Backend collaborator for the default scheduler
            event_history_size: Number of recent events kept in memory
        """
        self._chain = chain
        self._registry = registry or get_registry()
        self._settings = settings or self._registry.settings or get_settings()
        self._scheduler = scheduler or RecoveryScheduler(hooks=hooks, settings=self._settings)
        self._mount_guard = mount_guard or MountCycleGuard(
            self._settings, clock=self._registry.clock
        )
        self._sessions: dict[str, _SubjectSession] = {}
        self._listeners: list[EventListener] = []
        self._events: deque[SupervisorEvent] = deque(maxlen=event_history_size)

    # =========================================================================
    # Factory Methods
    # =========================================================================

    @classmethod
    def from_probe(
        cls,
        capability_probe: CapabilityProbe,
        backends: Optional[Iterable[BackendDescriptor]] = None,
        **kwargs: Any,
    ) -> "RendererOrchestrator":
        """
        Build the session's fallback chain from a capability probe.

        Args:
            capability_probe: Callable returning DeviceCapabilities
            backends: Candidate backends (default: default_backends())
            **kwargs: Passed to the constructor

        Returns:
            RendererOrchestrator
        """
        capabilities = capability_probe()
        chain = FallbackChainResolver.build(
            backends if backends is not None else default_backends(), capabilities
        )
        return cls(chain, **kwargs)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def chain(self) -> FallbackChainResolver:
        return self._chain

    @property
    def registry(self) -> GlobalCircuitBreakerRegistry:
        return self._registry

    @property
    def scheduler(self) -> RecoveryScheduler:
        return self._scheduler

    @property
    def events(self) -> list[SupervisorEvent]:
        """Recent events, oldest first."""
        return list(self._events)

    # =========================================================================
    # Event Stream
    # =========================================================================

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener for supervisor events.

        Returns:
            Callable that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SupervisorEvent) -> None:
        self._events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "event listener failed",
                    subject_id=event.subject_id,
                    event_type=event.type,
                )

    def _emit_permanent(self, session: _SubjectSession, backend_id: str, reason: str) -> None:
        if backend_id in session.permanent_reported:
            return
        session.permanent_reported.add(backend_id)
        self._emit(
            SupervisorEvent(
                type="permanent",
                subject_id=session.subject_id,
                from_backend=backend_id,
                reason=reason,
                timestamp=self._registry.clock(),
            )
        )

    # =========================================================================
    # Sessions
    # =========================================================================

    def _session(self, subject_id: str) -> _SubjectSession:
        session = self._sessions.get(subject_id)
        if session is None:
            session = _SubjectSession(
                subject_id=subject_id,
                active_backend_id=self._chain.primary.id,
            )
            self._sessions[subject_id] = session
        return session

    @asynccontextmanager
    async def _locked_session(self, subject_id: str) -> AsyncIterator[_SubjectSession]:
        """
        Hold the lock of the subject's current session.

        A session dropped by a reset while this caller waited is skipped and
        the lock of its replacement is taken instead.
        """
        while True:
            session = self._session(subject_id)
            async with session.lock:
                if self._sessions.get(subject_id) is session:
                    yield session
                    return

    def _resolve_next(self, subject_id: str, current_id: str) -> BackendDescriptor:
        """Next backend, skipping ones whose breaker still rejects them."""
        candidate = self._chain.next(current_id)
        while (
            not self._chain.is_terminal(candidate.id)
            and self._registry.has(subject_id, candidate.id)
            and self._registry.status(subject_id, candidate.id).should_fallback
        ):
            candidate = self._chain.next(candidate.id)
        return candidate

    async def _swap(self, session: _SubjectSession, to: BackendDescriptor, reason: str) -> None:
        old_backend = session.active_backend_id
        self._scheduler.cancel(session.subject_id)
        session.active_backend_id = to.id
        session.retry_count = 0
        session.last_failure = None

        event = SupervisorEvent(
            type="fallback",
            subject_id=session.subject_id,
            from_backend=old_backend,
            to_backend=to.id,
            reason=reason,
            timestamp=self._registry.clock(),
        )
        session.fallback_history.append(event)
        logger.warning(
            "falling back to next backend",
            subject_id=session.subject_id,
            from_backend=old_backend,
            to_backend=to.id,
            reason=reason,
        )
        if self._settings.metrics_enabled:
            record_fallback(old_backend, to.id)
        self._emit(event)

    async def _advance(
        self,
        session: _SubjectSession,
        kind: ErrorKind,
        decision: BreakerDecision,
        reason: str,
    ) -> FailureOutcome:
        current = session.active_backend_id
        target = self._resolve_next(session.subject_id, current)
        if target.id == current:
            logger.warning(
                "terminal backend failed, staying on it",
                subject_id=session.subject_id,
                backend=current,
                reason=reason,
            )
            outcome = FailureOutcome(
                subject_id=session.subject_id,
                backend_id=current,
                kind=kind,
                decision=decision,
                action=FailureAction.TERMINAL,
                next_backend_id=current,
                reason=reason,
            )
            session.last_failure = outcome
            return outcome

        await self._swap(session, target, reason)
        return FailureOutcome(
            subject_id=session.subject_id,
            backend_id=current,
            kind=kind,
            decision=decision,
            action=FailureAction.FALLBACK,
            next_backend_id=target.id,
            reason=reason,
        )

    # =========================================================================
    # Lifecycle Notifications
    # =========================================================================

    async def on_mount(self, subject_id: str) -> BackendDescriptor:
        """
        Record a mount of a subject and return the backend to render with.

        A backend whose breaker rejects mounting is skipped first. A mount
        cycle makes the active backend PERMANENT and falls back immediately.
        """
        async with self._locked_session(subject_id) as session:
            with subject_context(subject_id):
                status = self._registry.status(subject_id, session.active_backend_id)
                if status.should_fallback and not self._chain.is_terminal(
                    session.active_backend_id
                ):
                    target = self._resolve_next(subject_id, session.active_backend_id)
                    await self._swap(
                        session, target, f"circuit {status.level.value} at mount"
                    )

                backend_id = session.active_backend_id
                await self._registry.record_mount(subject_id, backend_id)
                verdict = self._mount_guard.record_mount(subject_id)
                if verdict.newly_detected:
                    await self._registry.force_permanent(
                        subject_id, backend_id, verdict.reason, mount_cycle=True
                    )
                    self._emit_permanent(session, backend_id, verdict.reason)
                    await self._advance(
                        session, ErrorKind.GENERIC, BreakerDecision.PERMANENT, verdict.reason
                    )
                return self._chain.get(session.active_backend_id) or self._chain.terminal

    async def on_unmount(self, subject_id: str) -> None:
        """Cancel any pending recovery of an unmounted subject."""
        async with self._locked_session(subject_id) as session:
            if self._scheduler.cancel(subject_id):
                logger.info("pending recovery cancelled on unmount", subject_id=subject_id)

    # =========================================================================
    # Failure Routing
    # =========================================================================

    async def on_backend_failure(
        self,
        subject_id: str,
        raw_error: Union[BaseException, str],
        context: Optional[Mapping[str, Any]] = None,
    ) -> FailureOutcome:
        """
        Route one backend failure through the pipeline.

        Args:
            subject_id: Subject whose backend failed
            raw_error: Exception or failure text reported by the backend
            context: Optional "stack", "component_stack" and "backend_id";
                a report naming a backend other than the active one is
                recorded against that backend and otherwise ignored

        Returns:
            FailureOutcome describing the action taken
        """
        context = context or {}
        async with self._locked_session(subject_id) as session:
            with subject_context(subject_id):
                return await self._handle_failure(session, raw_error, context)

    async def _handle_failure(
        self,
        session: _SubjectSession,
        raw_error: Union[BaseException, str],
        context: Mapping[str, Any],
    ) -> FailureOutcome:
        subject_id = session.subject_id
        backend_id = str(context.get(CONTEXT_BACKEND_ID) or session.active_backend_id)
        is_active = backend_id == session.active_backend_id

        message, stack = _describe(raw_error, context)
        kind = classify(message, stack)
        policy = get_recovery_policy(kind)
        signature = self._registry.tracker.build(
            message,
            kind,
            self._registry.clock(),
            stack=stack,
            context_stack=str(context.get(CONTEXT_COMPONENT_STACK, "")),
        )

        if is_active:
            self._scheduler.cancel(subject_id)
        decision = await self._registry.record_error(subject_id, backend_id, signature)

        logger.error(
            "backend failure",
            subject_id=subject_id,
            backend=backend_id,
            kind=kind.value,
            decision=decision.value,
            strategy=policy.strategy_name,
            error=message,
        )
        if self._settings.metrics_enabled:
            record_backend_failure(backend_id, kind.value, decision.value)

        if decision is BreakerDecision.PERMANENT:
            self._emit_permanent(
                session,
                backend_id,
                self._registry.breaker(subject_id, backend_id).state.permanent_reason
                or explain(kind),
            )

        if not is_active:
            return FailureOutcome(
                subject_id=subject_id,
                backend_id=backend_id,
                kind=kind,
                decision=decision,
                action=FailureAction.IGNORED,
                next_backend_id=session.active_backend_id,
                reason="failure reported for an inactive backend",
            )

        if decision is not BreakerDecision.ALLOW:
            return await self._advance(
                session, kind, decision, f"circuit {decision.value}: {explain(kind)}"
            )

        if not policy.can_recover:
            return await self._advance(session, kind, decision, explain(kind))

        budget = min(policy.max_retries, self._settings.max_retries)
        if not self._settings.enable_auto_recovery or session.retry_count >= budget:
            return await self._advance(
                session,
                kind,
                decision,
                f"retry budget exhausted ({session.retry_count}/{budget}): {explain(kind)}",
            )

        status = self._registry.status(subject_id, backend_id)
        delay = max(policy.recovery_delay_seconds, status.recovery_wait_remaining)
        await self._schedule_recovery(session, backend_id, policy, delay)

        outcome = FailureOutcome(
            subject_id=subject_id,
            backend_id=backend_id,
            kind=kind,
            decision=decision,
            action=FailureAction.RECOVERY_SCHEDULED,
            next_backend_id=backend_id,
            reason=explain(kind),
        )
        session.last_failure = outcome
        return outcome

    async def _schedule_recovery(
        self,
        session: _SubjectSession,
        backend_id: str,
        policy: RecoveryPolicy,
        delay: float,
    ) -> None:
        subject_id = session.subject_id
        attempt = session.retry_count
        session.retry_count += 1
        await self._registry.record_recovery_attempt(subject_id, backend_id)

        async def on_success(subject: str, strategy: str) -> None:
            await self._handle_recovery_success(subject, backend_id, strategy)

        async def on_failure(subject: str, error: BaseException) -> None:
            await self._handle_recovery_failure(subject, backend_id, error)

        self._scheduler.schedule(
            subject_id,
            policy,
            attempt,
            on_success=on_success,
            on_failure=on_failure,
            delay=delay,
        )

    # =========================================================================
    # Recovery Results
    # =========================================================================

    async def _handle_recovery_success(
        self, subject_id: str, backend_id: str, strategy: str
    ) -> None:
        async with self._locked_session(subject_id) as session:
            if session.active_backend_id != backend_id:
                return
            level = await self._registry.record_successful_recovery(subject_id, backend_id)
            session.last_failure = None
            logger.info(
                "backend recovered",
                subject_id=subject_id,
                backend=backend_id,
                strategy=strategy,
                level=level.value,
            )
            self._emit(
                SupervisorEvent(
                    type="recovery",
                    subject_id=subject_id,
                    from_backend=backend_id,
                    to_backend=backend_id,
                    reason=f"{strategy} succeeded",
                    timestamp=self._registry.clock(),
                )
            )

    async def _handle_recovery_failure(
        self, subject_id: str, backend_id: str, error: BaseException
    ) -> None:
        async with self._locked_session(subject_id) as session:
            if session.active_backend_id != backend_id:
                return
            level = await self._registry.record_failed_recovery(subject_id, backend_id)
            if level is BreakerLevel.PERMANENT:
                reason = (
                    self._registry.breaker(subject_id, backend_id).state.permanent_reason
                    or "recovery failed"
                )
                self._emit_permanent(session, backend_id, reason)
                with subject_context(subject_id):
                    await self._advance(
                        session, ErrorKind.GENERIC, BreakerDecision.PERMANENT, reason
                    )
                return
        await self.on_backend_failure(subject_id, error, {CONTEXT_BACKEND_ID: backend_id})

    async def retry_subject(self, subject_id: str) -> bool:
        """
        Manually retry the active backend of a subject.

        Clears the retry counter and schedules an immediate retry if the
        breaker currently allows recovery.

        Returns:
            True if a retry was scheduled
        """
        async with self._locked_session(subject_id) as session:
            backend_id = session.active_backend_id
            status = self._registry.status(subject_id, backend_id)
            if not status.can_recover:
                logger.info(
                    "manual retry refused",
                    subject_id=subject_id,
                    backend=backend_id,
                    level=status.level.value,
                )
                return False
            session.retry_count = 0
            session.last_failure = None
            await self._schedule_recovery(session, backend_id, MANUAL_RETRY_POLICY, 0.0)
            return True

    # =========================================================================
    # Host Queries
    # =========================================================================

    def active_backend(self, subject_id: str) -> BackendDescriptor:
        session = self._session(subject_id)
        return self._chain.get(session.active_backend_id) or self._chain.terminal

    def get_status(self, subject_id: str) -> BreakerStatus:
        """Status of the subject's active backend breaker."""
        session = self._session(subject_id)
        return self._registry.status(subject_id, session.active_backend_id)

    def debug_snapshot(self, subject_id: str) -> DebugSnapshot:
        session = self._session(subject_id)
        return self._registry.snapshot(subject_id, session.active_backend_id)

    def fallback_history(self, subject_id: str) -> list[SupervisorEvent]:
        return list(self._session(subject_id).fallback_history)

    def last_failure(self, subject_id: str) -> Optional[FailureOutcome]:
        return self._session(subject_id).last_failure

    def is_recovering(self, subject_id: str) -> bool:
        return self._scheduler.is_pending(subject_id)

    # =========================================================================
    # Reset
    # =========================================================================

    async def reset_subject(self, subject_id: str) -> None:
        """
        Forget everything about a subject.

        Cancels its recovery, drops its breakers and mount history, and
        returns it to the primary backend on next use.
        """
        async with self._locked_session(subject_id):
            self._scheduler.cancel(subject_id)
            self._registry.reset_subject(subject_id)
            self._mount_guard.reset(subject_id)
            self._sessions.pop(subject_id, None)
        logger.info("subject reset", subject_id=subject_id)

    async def reset_all(self) -> None:
        """Reset every subject and the whole breaker registry."""
        self._scheduler.cancel_all()
        self._registry.reset_all()
        self._mount_guard.reset_all()
        self._sessions.clear()
        logger.info("supervisor reset")

    # =========================================================================
    # Capability Changes
    # =========================================================================

    async def refresh_capabilities(self, capability_probe: CapabilityProbe) -> bool:
        """
        Re-probe the device and rebuild the chain if capabilities changed.

        Subjects whose active backend left the chain move to the best
        remaining backend at or below its fidelity tier.

        Returns:
            True if the chain changed
        """
        tiers = {backend.id: backend.capability_tier for backend in self._chain.backends}
        if not self._chain.rebuild(capability_probe()):
            return False

        for session in list(self._sessions.values()):
            async with session.lock:
                if self._sessions.get(session.subject_id) is not session:
                    continue
                if self._chain.contains(session.active_backend_id):
                    continue
                tier = tiers.get(session.active_backend_id, 0)
                await self._swap(
                    session, self._chain.best_at_or_below(tier), "device capabilities changed"
                )
        return True
