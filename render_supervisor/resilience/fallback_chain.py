"""
Fallback Chain

This module orders rendering backends from highest fidelity to a backend
that works on every device, and answers "what comes after this one?".

Reference Documents:
- Building Microservices (Newman): Cascading failure prevention
- Microservices Patterns (Richardson): Fallback patterns

Default Chain:
    webgl-3d → canvas-2d → ascii

The chain is built once per session from a capability probe. Backends whose
required capabilities are missing are left out. The last entry is always an
always-available backend, so next() can never run out of backends and a
cascade of failures always terminates.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from render_supervisor.core.exceptions import FallbackChainError
from render_supervisor.models.domain import BackendDescriptor, DeviceCapabilities

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

BACKEND_WEBGL_3D = "webgl-3d"
BACKEND_CANVAS_2D = "canvas-2d"
BACKEND_ASCII = "ascii"

CONFIG_KEY_NAME = "name"
CONFIG_KEY_BACKENDS = "backends"
CONFIG_KEY_ID = "id"
CONFIG_KEY_TIER = "tier"
CONFIG_KEY_ALWAYS_AVAILABLE = "always_available"
CONFIG_KEY_REQUIRES = "requires"


def default_backends() -> List[BackendDescriptor]:
    """Return the standard three-tier backend set."""
    return [
        BackendDescriptor(
            id=BACKEND_WEBGL_3D,
            capability_tier=3,
            requires=frozenset({"webgl"}),
        ),
        BackendDescriptor(
            id=BACKEND_CANVAS_2D,
            capability_tier=2,
            requires=frozenset({"canvas2d"}),
        ),
        BackendDescriptor(
            id=BACKEND_ASCII,
            capability_tier=1,
            is_always_available=True,
        ),
    ]


# =============================================================================
# Fallback Chain Resolver
# =============================================================================


class FallbackChainResolver:
    """
    Ordered backend list with a guaranteed terminal.

    Example:
        >>> chain = FallbackChainResolver.build(default_backends(), caps)
        >>> chain.next("webgl-3d").id
        'canvas-2d'
        >>> chain.next("ascii").id
        'ascii'

    Attributes:
        name: Identifier for logs and errors
        backends: Ordered descriptors, highest fidelity first
    """

    def __init__(self, backends: List[BackendDescriptor], name: str = "render-chain") -> None:
        """
        Initialize FallbackChainResolver from an already ordered list.

        Use build() to order and filter by capabilities.

        Raises:
            FallbackChainError: If the list is empty or does not end in an
                always-available backend
        """
        if not backends or not backends[-1].is_always_available:
            raise FallbackChainError(
                name,
                "chain must end in an always-available backend",
                backend_ids=[backend.id for backend in backends],
            )
        ids = [backend.id for backend in backends]
        if len(set(ids)) != len(ids):
            raise FallbackChainError(name, "duplicate backend ids", backend_ids=ids)

        self._name = name
        self._backends = list(backends)
        self._index = {backend.id: i for i, backend in enumerate(self._backends)}
        self._candidates: List[BackendDescriptor] = list(backends)

    # =========================================================================
    # Factory Methods
    # =========================================================================

    @classmethod
    def build(
        cls,
        backends: Iterable[BackendDescriptor],
        capabilities: DeviceCapabilities,
        name: str = "render-chain",
    ) -> "FallbackChainResolver":
        """
        Order backends by fidelity and keep those the device supports.

        Backends ranked below the lowest-fidelity always-available backend
        are dropped: they add no guarantee and could never be reached
        safely.

        Args:
            backends: Candidate descriptors in any order
            capabilities: Result of the capability probe
            name: Chain name

        Returns:
            FallbackChainResolver

        Raises:
            FallbackChainError: If no always-available backend survives
        """
        candidates = list(backends)
        ordered = cls._order(candidates, capabilities)
        if not ordered:
            raise FallbackChainError(
                name,
                "no always-available backend",
                backend_ids=[backend.id for backend in candidates],
            )
        resolver = cls(ordered, name=name)
        resolver._candidates = candidates
        logger.info(
            "fallback chain built",
            extra={"chain": name, "backends": [backend.id for backend in ordered]},
        )
        return resolver

    @classmethod
    def from_config(
        cls, config: Dict[str, Any], capabilities: DeviceCapabilities
    ) -> "FallbackChainResolver":
        """
        Create a resolver from a configuration dictionary.

        Args:
            config: Dict with name and a list of backend dicts
                (id, tier, always_available, requires)
            capabilities: Result of the capability probe

        Returns:
            FallbackChainResolver
        """
        name = config.get(CONFIG_KEY_NAME, "render-chain")
        backends = [
            BackendDescriptor(
                id=backend_config[CONFIG_KEY_ID],
                capability_tier=backend_config.get(CONFIG_KEY_TIER, 0),
                is_always_available=backend_config.get(CONFIG_KEY_ALWAYS_AVAILABLE, False),
                requires=frozenset(backend_config.get(CONFIG_KEY_REQUIRES, ())),
            )
            for backend_config in config.get(CONFIG_KEY_BACKENDS, [])
        ]
        return cls.build(backends, capabilities, name=name)

    @classmethod
    def create_default_chain(
        cls, capabilities: Optional[DeviceCapabilities] = None
    ) -> "FallbackChainResolver":
        """Create the webgl-3d → canvas-2d → ascii chain."""
        return cls.build(default_backends(), capabilities or DeviceCapabilities())

    @staticmethod
    def _order(
        backends: List[BackendDescriptor], capabilities: DeviceCapabilities
    ) -> List[BackendDescriptor]:
        usable = [
            backend
            for backend in backends
            if backend.is_always_available
            or all(capabilities.supports(cap) for cap in backend.requires)
        ]
        # stable sort keeps declaration order within a tier
        usable.sort(key=lambda backend: backend.capability_tier, reverse=True)

        last_guaranteed = None
        for i, backend in enumerate(usable):
            if backend.is_always_available:
                last_guaranteed = i
        if last_guaranteed is None:
            return []
        return usable[: last_guaranteed + 1]

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def name(self) -> str:
        return self._name

    @property
    def backends(self) -> List[BackendDescriptor]:
        """Ordered list of backends."""
        return list(self._backends)

    @property
    def primary(self) -> BackendDescriptor:
        """Highest-fidelity backend."""
        return self._backends[0]

    @property
    def terminal(self) -> BackendDescriptor:
        """Always-available last backend."""
        return self._backends[-1]

    # =========================================================================
    # Resolution
    # =========================================================================

    def contains(self, backend_id: str) -> bool:
        return backend_id in self._index

    def get(self, backend_id: str) -> Optional[BackendDescriptor]:
        index = self._index.get(backend_id)
        return None if index is None else self._backends[index]

    def is_terminal(self, backend_id: str) -> bool:
        return backend_id == self.terminal.id

    def next(self, current_id: str) -> BackendDescriptor:
        """
        Return the backend after current_id.

        The terminal backend is returned when current_id is last or not in
        the chain; never "no backend".
        """
        index = self._index.get(current_id)
        if index is None or index + 1 >= len(self._backends):
            return self.terminal
        return self._backends[index + 1]

    def best_at_or_below(self, tier: int) -> BackendDescriptor:
        """Highest-fidelity backend whose tier does not exceed tier."""
        for backend in self._backends:
            if backend.capability_tier <= tier:
                return backend
        return self.terminal

    def rebuild(self, capabilities: DeviceCapabilities) -> bool:
        """
        Re-filter the original candidates after capabilities changed.

        Returns:
            True if the chain changed

        Raises:
            FallbackChainError: If no always-available backend survives
        """
        ordered = self._order(self._candidates, capabilities)
        if not ordered:
            raise FallbackChainError(
                self._name,
                "no always-available backend",
                backend_ids=[backend.id for backend in self._candidates],
            )
        if [b.id for b in ordered] == [b.id for b in self._backends]:
            return False
        self._backends = ordered
        self._index = {backend.id: i for i, backend in enumerate(ordered)}
        logger.info(
            "fallback chain rebuilt",
            extra={"chain": self._name, "backends": [b.id for b in ordered]},
        )
        return True
