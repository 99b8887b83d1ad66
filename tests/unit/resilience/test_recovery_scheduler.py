"""
Tests for the Recovery Scheduler.

Covers:
- Strategy step order against recording hooks
- Success and failure callbacks
- Cancellation and rescheduling
- Rejection of unrecoverable or unknown policies
"""

import asyncio

import pytest


@pytest.fixture
def callbacks():
    """Record success/failure callback invocations."""
    results: list[tuple] = []

    async def on_success(subject_id: str, strategy: str) -> None:
        results.append(("success", subject_id, strategy))

    async def on_failure(subject_id: str, error: BaseException) -> None:
        results.append(("failure", subject_id, str(error)))

    return results, on_success, on_failure


def _policy(strategy: str, delay_ms: int = 0, can_recover: bool = True):
    from render_supervisor.models.domain import RecoveryPolicy

    return RecoveryPolicy(
        can_recover=can_recover,
        recovery_delay_ms=delay_ms,
        max_retries=1,
        strategy_name=strategy,
    )


class TestStrategies:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "strategy,expected_calls,expected_sleeps",
        [
            ("cleanup-and-retry", ["release_resources", "retry"], [5.0, 1.0]),
            ("disable-feature", ["disable_feature", "retry"], [5.0, 0.5]),
            ("fallback-materials", ["degrade_materials", "retry"], [5.0, 1.0]),
            ("retry-immediate", ["retry"], [5.0, 0.1]),
            ("retry-once", ["retry"], [5.0, 0.1]),
            ("retry-with-backoff", ["retry"], [5.0, 1.0]),
        ],
    )
    async def test_strategy_steps(
        self,
        scheduler,
        recording_hooks,
        instant_sleep,
        callbacks,
        strategy,
        expected_calls,
        expected_sleeps,
    ) -> None:
        results, on_success, on_failure = callbacks

        task = scheduler.schedule(
            "hero", _policy(strategy, delay_ms=5000), 0, on_success, on_failure
        )
        await task

        assert recording_hooks.names() == expected_calls
        assert instant_sleep.calls == expected_sleeps
        assert results == [("success", "hero", strategy)]

    @pytest.mark.asyncio
    async def test_disable_feature_targets_animation(
        self, scheduler, recording_hooks, callbacks
    ) -> None:
        _, on_success, on_failure = callbacks

        await scheduler.schedule("hero", _policy("disable-feature"), 0, on_success, on_failure)

        assert ("disable_feature", "hero", "animation") in recording_hooks.calls

    def test_backoff_delay(self) -> None:
        from render_supervisor.resilience.recovery_scheduler import backoff_delay

        assert [backoff_delay(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    @pytest.mark.asyncio
    async def test_delay_override(self, scheduler, instant_sleep, callbacks) -> None:
        _, on_success, on_failure = callbacks

        await scheduler.schedule(
            "hero", _policy("retry-once", delay_ms=1000), 0, on_success, on_failure, delay=7.5
        )

        assert instant_sleep.calls[0] == 7.5


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_failure_reported(self, scheduler, recording_hooks, callbacks) -> None:
        results, on_success, on_failure = callbacks
        recording_hooks.fail_retries = 1

        await scheduler.schedule("hero", _policy("retry-once"), 0, on_success, on_failure)

        assert results == [("failure", "hero", "remount failed: network connection lost")]
        assert not scheduler.is_pending("hero")

    @pytest.mark.asyncio
    async def test_not_pending_after_success(self, scheduler, callbacks) -> None:
        _, on_success, on_failure = callbacks

        task = scheduler.schedule("hero", _policy("retry-once"), 0, on_success, on_failure)
        assert scheduler.is_pending("hero")
        await task

        assert not scheduler.is_pending("hero")

    @pytest.mark.asyncio
    async def test_callback_may_schedule_again(self, scheduler, callbacks) -> None:
        results, on_success, on_failure = callbacks
        follow_ups: list[asyncio.Task] = []

        async def reschedule(subject_id: str, strategy: str) -> None:
            follow_ups.append(
                scheduler.schedule(subject_id, _policy("retry-once"), 1, on_success, on_failure)
            )

        await scheduler.schedule("hero", _policy("retry-once"), 0, reschedule, on_failure)

        assert scheduler.is_pending("hero")
        await follow_ups[0]
        assert results == [("success", "hero", "retry-once")]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_suppresses_callbacks(self, scheduler, recording_hooks, callbacks) -> None:
        results, on_success, on_failure = callbacks

        task = scheduler.schedule(
            "hero", _policy("retry-once", delay_ms=1000), 0, on_success, on_failure
        )
        assert scheduler.cancel("hero") is True

        with pytest.raises(asyncio.CancelledError):
            await task
        assert results == []
        assert recording_hooks.calls == []

    @pytest.mark.asyncio
    async def test_cancel_without_pending_task(self, scheduler) -> None:
        assert scheduler.cancel("nobody") is False

    @pytest.mark.asyncio
    async def test_reschedule_replaces_pending_task(self, scheduler, callbacks) -> None:
        results, on_success, on_failure = callbacks

        first = scheduler.schedule("hero", _policy("retry-once"), 0, on_success, on_failure)
        second = scheduler.schedule("hero", _policy("retry-immediate"), 1, on_success, on_failure)

        with pytest.raises(asyncio.CancelledError):
            await first
        await second
        assert results == [("success", "hero", "retry-immediate")]

    @pytest.mark.asyncio
    async def test_cancel_all(self, scheduler, callbacks) -> None:
        _, on_success, on_failure = callbacks

        tasks = [
            scheduler.schedule(subject, _policy("retry-once"), 0, on_success, on_failure)
            for subject in ("hero", "villain")
        ]

        assert scheduler.cancel_all() == 2
        await asyncio.gather(*tasks, return_exceptions=True)
        assert all(task.cancelled() for task in tasks)


class TestRejection:
    @pytest.mark.asyncio
    async def test_unrecoverable_policy_raises(self, scheduler, callbacks) -> None:
        from render_supervisor.core.exceptions import RecoveryError

        _, on_success, on_failure = callbacks

        with pytest.raises(RecoveryError) as exc_info:
            scheduler.schedule(
                "hero",
                _policy("fallback-backend", can_recover=False),
                0,
                on_success,
                on_failure,
            )
        assert exc_info.value.strategy_name == "fallback-backend"

    @pytest.mark.asyncio
    async def test_unknown_strategy_raises(self, scheduler, callbacks) -> None:
        from render_supervisor.core.exceptions import RecoveryError

        _, on_success, on_failure = callbacks

        with pytest.raises(RecoveryError):
            scheduler.schedule("hero", _policy("pray"), 0, on_success, on_failure)
