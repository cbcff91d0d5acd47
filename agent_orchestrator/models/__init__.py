"""
Data models for the agent orchestrator.
"""

from .config import (
    OrchestratorConfig,
    GeneratorConfig,
    EmbeddingConfig,
    WebSearchConfig,
    RecordStoreConfig,
    CacheConfig,
    ServerConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)
from .conversation import (
    Role,
    StopReason,
    TextSegment,
    ToolInvocation,
    MalformedInvocation,
    Segment,
    ToolResult,
    Turn,
    Conversation,
)
from .run_state import AgentRunState, LoopPhase

__all__ = [
    # Config models
    "OrchestratorConfig",
    "GeneratorConfig",
    "EmbeddingConfig",
    "WebSearchConfig",
    "RecordStoreConfig",
    "CacheConfig",
    "ServerConfig",
    "LoggingConfig",
    "LangfuseConfig",
    "AppConfig",
    # Conversation models
    "Role",
    "StopReason",
    "TextSegment",
    "ToolInvocation",
    "MalformedInvocation",
    "Segment",
    "ToolResult",
    "Turn",
    "Conversation",
    # Run state
    "AgentRunState",
    "LoopPhase",
]
