"""Render Supervisor - resilience layer for interchangeable rendering backends.

RendererOrchestrator is the entry point; the resilience package holds the
breaker, fallback chain and recovery components it composes.
"""

from render_supervisor.orchestrator import RendererOrchestrator

__version__ = "0.1.0"

__all__ = ["RendererOrchestrator", "__version__"]
