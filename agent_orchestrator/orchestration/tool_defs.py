"""
Tool definitions for the orchestration loop.

Converts ToolRegistry entries into OpenAI-style JSON tool definitions.
"""

import logging
from typing import Optional

from ..tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_tool_definitions(
    registry: ToolRegistry,
    exclude_tools: Optional[set[str]] = None,
) -> list[dict]:
    """
    Build OpenAI function-calling tool definitions from the registry.

    Args:
        registry: Registry holding the tools
        exclude_tools: Tool names to leave out of the catalogue

    Returns:
        List of OpenAI-format tool definitions.
    """
    exclude = exclude_tools or set()
    tools: list[dict] = []
    for name, tool_def in registry.all_tools().items():
        if name in exclude:
            logger.debug("Excluding tool '%s'", name)
            continue
        tools.append(tool_def.schema())
    return tools
