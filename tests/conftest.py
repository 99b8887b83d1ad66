"""
Pytest configuration for the Render Supervisor test suite.

Reference Documents:
- GUIDELINES pp. 155-157: "high and low gear" testing philosophy
- GUIDELINES pp. 157: FakeRepository pattern using duck typing

This configuration sets up:
- Test markers for categorization
- A fake monotonic clock and an instant sleep, so time-based behaviour
  (cooldowns, signature windows, mount cycles) is deterministic
- Settings, registry and orchestrator fixtures wired to the fake clock
- Recording recovery hooks following the FakeRepository pattern
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to Python path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Test Markers
# =============================================================================


def pytest_configure(config):
    """
    Register custom markers for test categorization.

    - unit: Low gear tests for individual components
    - integration: High gear tests for component interactions
    - slow: Tests that take a long time to run
    """
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for component interactions")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


# =============================================================================
# Time Fakes
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InstantSleep:
    """
    Sleep replacement that advances a FakeClock instead of waiting.

    Yields to the event loop once so cancellation still takes effect.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


class RecordingHooks:
    """
    RecoveryHooks test double that records calls.

    Set fail_retries to make the next N retry() calls raise.
    """

    def __init__(self, fail_retries: int = 0) -> None:
        self.calls: list[tuple] = []
        self.fail_retries = fail_retries

    async def release_resources(self, subject_id: str) -> None:
        self.calls.append(("release_resources", subject_id))

    async def disable_feature(self, subject_id: str, feature: str) -> None:
        self.calls.append(("disable_feature", subject_id, feature))

    async def degrade_materials(self, subject_id: str) -> None:
        self.calls.append(("degrade_materials", subject_id))

    async def retry(self, subject_id: str) -> None:
        self.calls.append(("retry", subject_id))
        if self.fail_retries > 0:
            self.fail_retries -= 1
            raise RuntimeError("remount failed: network connection lost")

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


async def drain(rounds: int = 50) -> None:
    """Let scheduled tasks run to completion on the current loop."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def instant_sleep(fake_clock) -> InstantSleep:
    return InstantSleep(fake_clock)


@pytest.fixture
def recording_hooks() -> RecordingHooks:
    return RecordingHooks()


@pytest.fixture
def drain_tasks():
    """Return a coroutine function that lets pending tasks finish."""
    return drain


@pytest.fixture
def test_settings():
    """
    Create test settings with the documented default thresholds.

    Metrics stay enabled so that metric calls are exercised.
    """
    from render_supervisor.core.config import Settings

    return Settings(
        service_name="render-supervisor-test",
        environment="development",
        log_level="DEBUG",
        metrics_enabled=True,
    )


@pytest.fixture
def registry(test_settings, fake_clock):
    from render_supervisor.resilience.registry import GlobalCircuitBreakerRegistry

    return GlobalCircuitBreakerRegistry(settings=test_settings, clock=fake_clock)


@pytest.fixture
def full_capabilities():
    from render_supervisor.models.domain import DeviceCapabilities

    return DeviceCapabilities(webgl=True, webgl2=True, canvas2d=True)


@pytest.fixture
def default_chain(full_capabilities):
    from render_supervisor.resilience.fallback_chain import FallbackChainResolver

    return FallbackChainResolver.create_default_chain(full_capabilities)


@pytest.fixture
def scheduler(recording_hooks, test_settings, instant_sleep):
    from render_supervisor.resilience.recovery_scheduler import RecoveryScheduler

    return RecoveryScheduler(
        hooks=recording_hooks, settings=test_settings, sleep=instant_sleep
    )


@pytest.fixture
def orchestrator(default_chain, registry, scheduler, test_settings):
    from render_supervisor.orchestrator import RendererOrchestrator

    return RendererOrchestrator(
        default_chain,
        registry=registry,
        scheduler=scheduler,
        settings=test_settings,
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset process-wide state before and after each test."""
    from render_supervisor.core.config import get_settings
    from render_supervisor.resilience.registry import reset_registry

    get_settings.cache_clear()
    reset_registry()
    yield
    get_settings.cache_clear()
    reset_registry()
