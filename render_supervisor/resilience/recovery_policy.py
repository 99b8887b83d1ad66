"""
Recovery Policy Table

Static lookup from ErrorKind to RecoveryPolicy. Each kind has exactly one
row; "fallback-backend" rows are not recoverable and send the orchestrator
straight to the next backend.
"""

from render_supervisor.models.domain import ErrorKind, RecoveryPolicy

# =============================================================================
# Strategy Names
# =============================================================================

STRATEGY_RETRY_WITH_BACKOFF = "retry-with-backoff"
STRATEGY_RETRY_IMMEDIATE = "retry-immediate"
STRATEGY_CLEANUP_AND_RETRY = "cleanup-and-retry"
STRATEGY_DISABLE_FEATURE = "disable-feature"
STRATEGY_FALLBACK_MATERIALS = "fallback-materials"
STRATEGY_RETRY_ONCE = "retry-once"
STRATEGY_FALLBACK_BACKEND = "fallback-backend"

_FALLBACK_BACKEND = RecoveryPolicy(
    can_recover=False,
    recovery_delay_ms=0,
    max_retries=0,
    strategy_name=STRATEGY_FALLBACK_BACKEND,
)

_MATERIAL_FALLBACK = RecoveryPolicy(
    can_recover=True,
    recovery_delay_ms=1000,
    max_retries=2,
    strategy_name=STRATEGY_FALLBACK_MATERIALS,
)

RECOVERY_POLICIES: dict[ErrorKind, RecoveryPolicy] = {
    ErrorKind.NETWORK: RecoveryPolicy(
        can_recover=True,
        recovery_delay_ms=2000,
        max_retries=3,
        strategy_name=STRATEGY_RETRY_WITH_BACKOFF,
    ),
    ErrorKind.LOADING: RecoveryPolicy(
        can_recover=True,
        recovery_delay_ms=1000,
        max_retries=2,
        strategy_name=STRATEGY_RETRY_IMMEDIATE,
    ),
    ErrorKind.MEMORY: RecoveryPolicy(
        can_recover=True,
        recovery_delay_ms=5000,
        max_retries=1,
        strategy_name=STRATEGY_CLEANUP_AND_RETRY,
    ),
    ErrorKind.PARSING: _FALLBACK_BACKEND,
    ErrorKind.VALIDATION: _FALLBACK_BACKEND,
    ErrorKind.ANIMATION: RecoveryPolicy(
        can_recover=True,
        recovery_delay_ms=500,
        max_retries=1,
        strategy_name=STRATEGY_DISABLE_FEATURE,
    ),
    ErrorKind.MATERIAL: _MATERIAL_FALLBACK,
    ErrorKind.TEXTURE: _MATERIAL_FALLBACK,
    ErrorKind.GEOMETRY: _FALLBACK_BACKEND,
    ErrorKind.GENERIC: RecoveryPolicy(
        can_recover=True,
        recovery_delay_ms=1000,
        max_retries=1,
        strategy_name=STRATEGY_RETRY_ONCE,
    ),
}


def get_recovery_policy(kind: ErrorKind) -> RecoveryPolicy:
    """Return the recovery policy row for an ErrorKind."""
    return RECOVERY_POLICIES[kind]
