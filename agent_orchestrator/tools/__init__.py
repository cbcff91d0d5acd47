"""
Agent tools.

Available tools:
- fetch_canon: Frameworks, templates and compliance rules per content type
- knowledge_search: Semantic search over business resources
- web_search: Real-time web search via Tavily
- content_execution: Artifact generation with a second model profile
- validate_content: Compliance rule evaluation
"""

from . import canon, content, knowledge, search, validation
from .canon import CanonLibrary
from .content import ContentGenerator
from .knowledge import KnowledgeBase
from .registry import ToolContext, ToolDefinition, ToolKind, ToolRegistry
from .validation import ContentValidator

__all__ = [
    "CanonLibrary",
    "ContentGenerator",
    "ContentValidator",
    "KnowledgeBase",
    "ToolContext",
    "ToolDefinition",
    "ToolKind",
    "ToolRegistry",
    "build_tool_registry",
]


def build_tool_registry(
    canon_library: CanonLibrary,
    knowledge_base: KnowledgeBase,
    web_search_provider,
    cache,
    generator: ContentGenerator,
    validator: ContentValidator,
) -> ToolRegistry:
    """Register every tool in catalogue order."""
    registry = ToolRegistry()
    canon.register(registry, canon_library)
    knowledge.register(registry, knowledge_base)
    search.register(registry, web_search_provider, cache)
    content.register(registry, generator)
    validation.register(registry, validator)
    return registry
