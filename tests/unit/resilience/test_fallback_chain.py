"""
Tests for the Fallback Chain Resolver.

Reference Documents:
- Building Microservices (Newman): Cascading failure prevention
- Microservices Patterns (Richardson): Fallback patterns

This module tests:
- Chain construction from a capability probe
- Guaranteed always-available terminal
- next() semantics, including the terminal and unknown ids
- Rebuilding after capabilities change
"""

import pytest


# =============================================================================
# Construction
# =============================================================================


class TestChainConstruction:
    def test_default_chain_order(self, default_chain) -> None:
        assert [b.id for b in default_chain.backends] == ["webgl-3d", "canvas-2d", "ascii"]
        assert default_chain.primary.id == "webgl-3d"
        assert default_chain.terminal.id == "ascii"

    def test_missing_capability_drops_backend(self) -> None:
        from render_supervisor.models.domain import DeviceCapabilities
        from render_supervisor.resilience.fallback_chain import FallbackChainResolver

        chain = FallbackChainResolver.create_default_chain(DeviceCapabilities(webgl=False))

        assert [b.id for b in chain.backends] == ["canvas-2d", "ascii"]

    def test_order_follows_tier_not_declaration(self, full_capabilities) -> None:
        from render_supervisor.resilience.fallback_chain import (
            FallbackChainResolver,
            default_backends,
        )

        chain = FallbackChainResolver.build(
            list(reversed(default_backends())), full_capabilities
        )

        assert [b.id for b in chain.backends] == ["webgl-3d", "canvas-2d", "ascii"]

    def test_backends_below_terminal_are_dropped(self, full_capabilities) -> None:
        from render_supervisor.models.domain import BackendDescriptor
        from render_supervisor.resilience.fallback_chain import (
            FallbackChainResolver,
            default_backends,
        )

        backends = default_backends() + [BackendDescriptor(id="blank", capability_tier=0)]
        chain = FallbackChainResolver.build(backends, full_capabilities)

        assert not chain.contains("blank")
        assert chain.terminal.id == "ascii"

    def test_no_always_available_backend_raises(self, full_capabilities) -> None:
        from render_supervisor.core.exceptions import FallbackChainError
        from render_supervisor.models.domain import BackendDescriptor
        from render_supervisor.resilience.fallback_chain import FallbackChainResolver

        with pytest.raises(FallbackChainError) as exc_info:
            FallbackChainResolver.build(
                [BackendDescriptor(id="webgl-3d", capability_tier=3)],
                full_capabilities,
            )
        assert exc_info.value.backend_ids == ["webgl-3d"]

    def test_constructor_rejects_chain_without_terminal(self) -> None:
        from render_supervisor.core.exceptions import FallbackChainError
        from render_supervisor.models.domain import BackendDescriptor
        from render_supervisor.resilience.fallback_chain import FallbackChainResolver

        with pytest.raises(FallbackChainError):
            FallbackChainResolver([BackendDescriptor(id="webgl-3d", capability_tier=3)])
        with pytest.raises(FallbackChainError):
            FallbackChainResolver([])

    def test_constructor_rejects_duplicates(self) -> None:
        from render_supervisor.core.exceptions import FallbackChainError
        from render_supervisor.models.domain import BackendDescriptor
        from render_supervisor.resilience.fallback_chain import FallbackChainResolver

        ascii_backend = BackendDescriptor(id="ascii", capability_tier=1, is_always_available=True)
        with pytest.raises(FallbackChainError):
            FallbackChainResolver([ascii_backend, ascii_backend])


class TestChainFactory:
    def test_from_config(self, full_capabilities) -> None:
        from render_supervisor.resilience.fallback_chain import FallbackChainResolver

        config = {
            "name": "preview-chain",
            "backends": [
                {"id": "ascii", "tier": 1, "always_available": True},
                {"id": "svg", "tier": 2, "requires": ["canvas2d"]},
                {"id": "webgl2", "tier": 4, "requires": ["webgl2"]},
            ],
        }

        chain = FallbackChainResolver.from_config(config, full_capabilities)

        assert chain.name == "preview-chain"
        assert [b.id for b in chain.backends] == ["webgl2", "svg", "ascii"]


# =============================================================================
# Resolution
# =============================================================================


class TestNext:
    def test_next_walks_the_chain(self, default_chain) -> None:
        assert default_chain.next("webgl-3d").id == "canvas-2d"
        assert default_chain.next("canvas-2d").id == "ascii"

    def test_terminal_returns_itself(self, default_chain) -> None:
        assert default_chain.next("ascii").id == "ascii"
        assert default_chain.is_terminal("ascii")

    def test_unknown_id_returns_terminal(self, default_chain) -> None:
        assert default_chain.next("vulkan").id == "ascii"

    def test_get(self, default_chain) -> None:
        assert default_chain.get("canvas-2d").capability_tier == 2
        assert default_chain.get("vulkan") is None

    def test_best_at_or_below(self, default_chain) -> None:
        assert default_chain.best_at_or_below(5).id == "webgl-3d"
        assert default_chain.best_at_or_below(2).id == "canvas-2d"
        assert default_chain.best_at_or_below(0).id == "ascii"


# =============================================================================
# Rebuild
# =============================================================================


class TestRebuild:
    def test_rebuild_after_capability_loss(self, default_chain) -> None:
        from render_supervisor.models.domain import DeviceCapabilities

        changed = default_chain.rebuild(DeviceCapabilities(webgl=False, canvas2d=True))

        assert changed is True
        assert [b.id for b in default_chain.backends] == ["canvas-2d", "ascii"]
        assert default_chain.next("canvas-2d").id == "ascii"

    def test_rebuild_restores_dropped_backend(self) -> None:
        from render_supervisor.models.domain import DeviceCapabilities
        from render_supervisor.resilience.fallback_chain import FallbackChainResolver

        chain = FallbackChainResolver.create_default_chain(DeviceCapabilities())

        assert chain.rebuild(DeviceCapabilities(webgl=True)) is True
        assert chain.primary.id == "webgl-3d"

    def test_rebuild_without_change(self, default_chain, full_capabilities) -> None:
        assert default_chain.rebuild(full_capabilities) is False
