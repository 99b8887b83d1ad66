"""
Mount Cycle Guard

Detects structural instability of a subject independently of what its errors
say: a component that is created and destroyed over and over is broken no
matter how each individual failure is classified.

Two detectors:
    subject: the same subject mounted N times in a row, each mount less than
             the cycle window after the previous one
    global:  more than M mounts across all subjects inside a rolling window

A detection flags the subject. Flags are sticky until reset, so one cycle
yields one verdict with newly_detected=True and exactly one fallback.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from render_supervisor.core.config import Settings, get_settings
from render_supervisor.observability.logging import get_logger
from render_supervisor.resilience.metrics import record_mount_cycle

logger = get_logger(__name__)

SCOPE_SUBJECT = "subject"
SCOPE_GLOBAL = "global"


@dataclass(frozen=True)
class MountCycleVerdict:
    """
    Result of recording one mount.

    Attributes:
        detected: The subject is (now or already) flagged
        newly_detected: This mount is the one that flagged it
        streak: Rapid mounts in a row for the subject
        global_count: Mounts of all subjects inside the rolling window
        reason: Human-readable cause when detected
    """

    detected: bool
    newly_detected: bool
    streak: int
    global_count: int
    reason: str = ""


@dataclass
class _SubjectMounts:
    streak: int = 0
    last_mount_time: Optional[float] = None
    flagged: bool = False


class MountCycleGuard:
    """Tracks mount timing per subject and across the process."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings()
        self._settings = settings
        self._clock = clock
        self._window = settings.mount_cycle_window_seconds
        self._threshold = settings.mount_cycle_threshold
        self._global_window = settings.global_mount_window_seconds
        self._global_threshold = settings.global_mount_threshold
        self._subjects: dict[str, _SubjectMounts] = {}
        self._recent_mounts: deque[float] = deque()

    def record_mount(self, subject_id: str) -> MountCycleVerdict:
        """
        Record a mount of a subject and check both detectors.

        Args:
            subject_id: Subject being mounted

        Returns:
            MountCycleVerdict
        """
        now = self._clock()
        mounts = self._subjects.setdefault(subject_id, _SubjectMounts())

        if (
            mounts.last_mount_time is not None
            and now - mounts.last_mount_time < self._window
        ):
            mounts.streak += 1
        else:
            mounts.streak = 1
        mounts.last_mount_time = now

        self._recent_mounts.append(now)
        while self._recent_mounts and now - self._recent_mounts[0] >= self._global_window:
            self._recent_mounts.popleft()
        global_count = len(self._recent_mounts)

        reason = ""
        scope = ""
        if mounts.streak >= self._threshold:
            reason = (
                f"mount cycle: {mounts.streak} mounts less than "
                f"{self._window:g}s apart"
            )
            scope = SCOPE_SUBJECT
        elif global_count > self._global_threshold:
            reason = (
                f"mount storm: {global_count} mounts across subjects within "
                f"{self._global_window:g}s"
            )
            scope = SCOPE_GLOBAL

        newly_detected = bool(reason) and not mounts.flagged
        if newly_detected:
            mounts.flagged = True
            logger.error(
                "mount cycle detected",
                subject_id=subject_id,
                scope=scope,
                streak=mounts.streak,
                global_count=global_count,
            )
            if self._settings.metrics_enabled:
                record_mount_cycle(scope)

        return MountCycleVerdict(
            detected=mounts.flagged,
            newly_detected=newly_detected,
            streak=mounts.streak,
            global_count=global_count,
            reason=reason or ("mount cycle previously detected" if mounts.flagged else ""),
        )

    def is_flagged(self, subject_id: str) -> bool:
        mounts = self._subjects.get(subject_id)
        return mounts is not None and mounts.flagged

    def reset(self, subject_id: str) -> None:
        """Forget the mount history and flag of one subject."""
        self._subjects.pop(subject_id, None)

    def reset_all(self) -> None:
        self._subjects.clear()
        self._recent_mounts.clear()
