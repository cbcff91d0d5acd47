"""
Error types and error tags for the agent orchestrator.

Only ``TransportError`` (model provider unreachable) and persistence failures
around the user's own message or the final answer end a run with a
``failure`` event. Everything else is absorbed into the conversation as a
failed tool result so the model can adapt.
"""

from enum import Enum


class ErrorTag(str, Enum):
    """Machine-readable tags attached to failed tool results and failures."""

    TRANSPORT_ERROR = "transport-error"
    MALFORMED_TOOL_ARGUMENTS = "malformed-tool-arguments"
    UNKNOWN_TOOL = "unknown-tool"
    INVALID_TOOL_ARGUMENTS = "invalid-tool-arguments"
    TOOL_EXECUTION_ERROR = "tool-execution-error"
    PERSISTENCE_ERROR = "persistence-error"
    ITERATION_CAP_REACHED = "iteration-cap-reached"
    VALIDATION_FAILED = "validation-failed"


# Tags that stop the loop immediately instead of being fed back to the model.
UNRECOVERABLE_TAGS = frozenset({ErrorTag.PERSISTENCE_ERROR})


class AgentError(Exception):
    """Base class for orchestrator errors."""

    tag: ErrorTag = ErrorTag.TOOL_EXECUTION_ERROR


class TransportError(AgentError):
    """The generative model provider could not be reached or returned an error."""

    tag = ErrorTag.TRANSPORT_ERROR


class ProviderError(AgentError):
    """An external collaborator (search, embeddings) failed."""


class PersistenceError(AgentError):
    """The record store rejected a read or write."""

    tag = ErrorTag.PERSISTENCE_ERROR


class ToolExecutionError(AgentError):
    """Raised by tool handlers to report a failure with an explicit tag."""

    def __init__(self, detail: str, tag: ErrorTag = ErrorTag.TOOL_EXECUTION_ERROR):
        super().__init__(detail)
        self.detail = detail
        self.tag = tag


class RunCancelled(AgentError):
    """The remote subscriber went away; the run must stop without emitting."""
