"""
Langfuse tracing integration for the agent orchestrator.

Provides observability for model turns, tool dispatches and the run lifecycle.
"""

from .client import TracingClient
from .context import ObservationContext, TracingContext

__all__ = [
    "TracingClient",
    "TracingContext",
    "ObservationContext",
]
