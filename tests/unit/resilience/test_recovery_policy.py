"""Tests for the static recovery policy table."""

import pytest


class TestRecoveryPolicyTable:
    def test_every_kind_has_a_policy(self) -> None:
        from render_supervisor.models.domain import ErrorKind
        from render_supervisor.resilience.recovery_policy import RECOVERY_POLICIES

        assert set(RECOVERY_POLICIES) == set(ErrorKind)

    @pytest.mark.parametrize(
        "kind,can_recover,delay_ms,max_retries,strategy",
        [
            ("network", True, 2000, 3, "retry-with-backoff"),
            ("loading", True, 1000, 2, "retry-immediate"),
            ("memory", True, 5000, 1, "cleanup-and-retry"),
            ("parsing", False, 0, 0, "fallback-backend"),
            ("validation", False, 0, 0, "fallback-backend"),
            ("animation", True, 500, 1, "disable-feature"),
            ("material", True, 1000, 2, "fallback-materials"),
            ("texture", True, 1000, 2, "fallback-materials"),
            ("geometry", False, 0, 0, "fallback-backend"),
            ("generic", True, 1000, 1, "retry-once"),
        ],
    )
    def test_policy_rows(self, kind, can_recover, delay_ms, max_retries, strategy) -> None:
        from render_supervisor.models.domain import ErrorKind
        from render_supervisor.resilience.recovery_policy import get_recovery_policy

        policy = get_recovery_policy(ErrorKind(kind))

        assert policy.can_recover is can_recover
        assert policy.recovery_delay_ms == delay_ms
        assert policy.max_retries == max_retries
        assert policy.strategy_name == strategy

    def test_delay_in_seconds(self) -> None:
        from render_supervisor.models.domain import ErrorKind
        from render_supervisor.resilience.recovery_policy import get_recovery_policy

        assert get_recovery_policy(ErrorKind.MEMORY).recovery_delay_seconds == 5.0

    def test_policies_are_immutable(self) -> None:
        from pydantic import ValidationError

        from render_supervisor.models.domain import ErrorKind
        from render_supervisor.resilience.recovery_policy import get_recovery_policy

        policy = get_recovery_policy(ErrorKind.NETWORK)
        with pytest.raises(ValidationError):
            policy.max_retries = 10

    def test_schedulable_strategies_are_known_to_scheduler(self) -> None:
        from render_supervisor.resilience.recovery_policy import RECOVERY_POLICIES
        from render_supervisor.resilience.recovery_scheduler import RecoveryScheduler

        strategies = set(RecoveryScheduler().strategies)
        for policy in RECOVERY_POLICIES.values():
            if policy.can_recover:
                assert policy.strategy_name in strategies
