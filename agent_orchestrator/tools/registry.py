"""
Tool Registry - Single source of truth for tool definitions.

Maps tool names to a pydantic argument schema, a handler and a formatter.
``dispatch`` validates arguments, runs the handler with an execution context,
and always returns a ``ToolResult``; no exception from a handler crosses the
registry boundary except cancellation.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ValidationError

from ..errors import AgentError, ErrorTag, RunCancelled, ToolExecutionError
from ..models import ToolResult
from ..orchestration.events import EventMultiplexer

logger = logging.getLogger(__name__)

# Maximum error detail length fed back to the model
MAX_ERROR_DETAIL = 500

HandlerOutput = Union[ToolResult, dict]


class ToolKind(str, Enum):
    READ_AUGMENTATION = "read-augmentation"
    GENERATION = "generation"
    VALIDATION = "validation"


@dataclass
class ToolContext:
    """Who is calling, on behalf of which conversation, and where events go."""

    run_id: str
    user_id: str
    business_profile_id: str
    conversation_id: str
    events: EventMultiplexer
    message_id: Optional[str] = None
    invocation_id: str = ""

    @property
    def cancelled(self) -> bool:
        return self.events.is_disconnected

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelled(f"run {self.run_id} cancelled")

    def progress(self, message: str, **extra: Any) -> None:
        self.events.progress(message, **extra)

    def insight(self, kind: str, content: Any, **extra: Any) -> None:
        self.events.insight(kind, content, **extra)


def default_formatter(output: dict) -> str:
    return json.dumps(output, default=str)


@dataclass
class ToolDefinition:
    """Metadata for a tool - defined once, used everywhere."""

    name: str
    description: str
    arguments: type[BaseModel]
    handler: Callable[[BaseModel, ToolContext], HandlerOutput]
    kind: ToolKind = ToolKind.READ_AUGMENTATION
    formatter: Callable[[dict], str] = default_formatter

    def schema(self) -> dict:
        """OpenAI function-calling schema for this tool."""
        parameters = self.arguments.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class ToolRegistry:
    """Registry of the tools available to one orchestrator instance."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        arguments: type[BaseModel],
        handler: Callable[[BaseModel, ToolContext], HandlerOutput],
        kind: ToolKind = ToolKind.READ_AUGMENTATION,
        formatter: Optional[Callable[[dict], str]] = None,
    ) -> ToolDefinition:
        """Register a tool with its metadata. Re-registering a name replaces it."""
        if name in self._tools:
            logger.warning(f"Tool '{name}' registered twice, replacing")
        tool = ToolDefinition(
            name=name,
            description=description,
            arguments=arguments,
            handler=handler,
            kind=kind,
            formatter=formatter or default_formatter,
        )
        self._tools[name] = tool
        return tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def all_tools(self) -> dict[str, ToolDefinition]:
        """Get a copy of all registered tools."""
        return self._tools.copy()

    def names(self) -> list[str]:
        return list(self._tools)

    def is_generation(self, name: str) -> bool:
        tool = self._tools.get(name)
        return tool is not None and tool.kind == ToolKind.GENERATION

    def get_tools_summary(self) -> str:
        """Get formatted summary of all tools for logs and prompts."""
        return "\n".join(f"- {name}: {tool.description}" for name, tool in self._tools.items())

    def schemas(self) -> list[dict]:
        """The tool catalogue sent with every model turn."""
        return [tool.schema() for tool in self._tools.values()]

    def dispatch(
        self,
        name: str,
        arguments: Any,
        context: ToolContext,
        invocation_id: str = "",
    ) -> ToolResult:
        """
        Run one tool invocation.

        Args:
            name: Tool name requested by the model
            arguments: Parsed JSON arguments
            context: Execution context (identity, conversation, events)
            invocation_id: Id the result answers

        Returns:
            ToolResult bound to ``invocation_id``

        Raises:
            RunCancelled: If the run was cancelled while the tool was running
        """
        invocation_id = invocation_id or context.invocation_id
        context.invocation_id = invocation_id
        prefix = f"[{context.run_id}]"

        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"{prefix} Unknown tool requested: {name}")
            return ToolResult.fail(
                ErrorTag.UNKNOWN_TOOL.value, ErrorTag.UNKNOWN_TOOL, tool=name
            ).for_invocation(invocation_id)

        if not isinstance(arguments, dict):
            detail = f"arguments must be a JSON object, got {type(arguments).__name__}"
            logger.warning(f"{prefix} {name}: {detail}")
            return ToolResult.fail(
                detail, ErrorTag.INVALID_TOOL_ARGUMENTS, tool=name
            ).for_invocation(invocation_id)

        try:
            args = tool.arguments.model_validate(arguments)
        except ValidationError as e:
            detail = _truncate(_validation_detail(e))
            logger.warning(f"{prefix} {name}: invalid arguments: {detail}")
            return ToolResult.fail(
                detail, ErrorTag.INVALID_TOOL_ARGUMENTS, tool=name
            ).for_invocation(invocation_id)

        logger.debug(f"{prefix} Dispatching {name} ({invocation_id}) with {arguments}")
        try:
            result = self._to_result(tool, tool.handler(args, context))
        except RunCancelled:
            raise
        except AgentError as e:
            detail = e.detail if isinstance(e, ToolExecutionError) else str(e)
            logger.warning(f"{prefix} {name} failed ({e.tag.value}): {detail}")
            return ToolResult.fail(
                _truncate(detail), e.tag, tool=name
            ).for_invocation(invocation_id)
        except Exception as e:
            logger.exception(f"{prefix} {name} raised: {e}")
            return ToolResult.fail(
                _truncate(f"{type(e).__name__}: {e}"),
                ErrorTag.TOOL_EXECUTION_ERROR,
                tool=name,
            ).for_invocation(invocation_id)

        return result.for_invocation(invocation_id)

    @staticmethod
    def _to_result(tool: ToolDefinition, output: HandlerOutput) -> ToolResult:
        if isinstance(output, ToolResult):
            return output
        if not isinstance(output, dict):
            raise TypeError(
                f"handler returned {type(output).__name__}, expected dict or ToolResult"
            )
        if output.get("error"):
            return ToolResult.fail(_truncate(str(output["error"])), tool=tool.name)
        return ToolResult.ok(tool.formatter(output), tool=tool.name)


def _validation_detail(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


def _truncate(detail: str) -> str:
    if len(detail) <= MAX_ERROR_DETAIL:
        return detail
    return detail[: MAX_ERROR_DETAIL - 3] + "..."
