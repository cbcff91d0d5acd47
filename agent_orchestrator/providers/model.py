"""
Generative model provider.

Wraps the OpenAI chat completions API in streaming mode and translates each
chunk into the increment protocol consumed by the response decoder.
"""

import logging
from typing import Any, Iterable, Iterator, Optional

import openai
from openai import OpenAI

from ..errors import TransportError
from ..models import StopReason
from ..orchestration.increments import (
    ContentDelta,
    Increment,
    SegmentKind,
    SegmentStart,
    SegmentStop,
    TurnStop,
)

logger = logging.getLogger(__name__)

FINISH_REASONS = {
    "stop": StopReason.NORMAL,
    "tool_calls": StopReason.TOOL_REQUESTED,
    "function_call": StopReason.TOOL_REQUESTED,
    "length": StopReason.LENGTH_LIMIT,
}


def map_finish_reason(finish_reason: Optional[str]) -> StopReason:
    return FINISH_REASONS.get(finish_reason or "", StopReason.OTHER)


def increments_from_chunks(chunks: Iterable[Any]) -> Iterator[Increment]:
    """
    Translate OpenAI ``ChatCompletionChunk`` objects into increments.

    Text and each tool call get their own segment index in arrival order. A
    segment is stopped when the next one starts or when the choice reports a
    finish reason. A stream that ends without a finish reason leaves its last
    segment open, so a half-received tool call is reported as malformed.
    """
    next_index = 0
    open_index: Optional[int] = None
    text_index: Optional[int] = None
    tool_segments: dict[int, int] = {}
    finish_reason: Optional[str] = None
    input_tokens = 0
    output_tokens = 0

    for chunk in chunks:
        usage = getattr(chunk, "usage", None)
        if usage:
            input_tokens = usage.prompt_tokens or 0
            output_tokens = usage.completion_tokens or 0

        if not chunk.choices:
            continue
        choice = chunk.choices[0]
        delta = choice.delta

        if delta is not None and delta.content:
            if text_index is None or text_index != open_index:
                if open_index is not None:
                    yield SegmentStop(open_index)
                text_index = open_index = next_index
                next_index += 1
                yield SegmentStart(text_index, SegmentKind.TEXT)
            yield ContentDelta(text_index, delta.content)

        for tool_call in (delta.tool_calls if delta is not None else None) or []:
            segment = tool_segments.get(tool_call.index)
            function = tool_call.function
            if segment is None:
                if open_index is not None:
                    yield SegmentStop(open_index)
                segment = open_index = next_index
                next_index += 1
                tool_segments[tool_call.index] = segment
                yield SegmentStart(
                    segment,
                    SegmentKind.TOOL,
                    tool_id=tool_call.id or f"call_{segment}",
                    tool_name=(function.name if function else None) or "",
                )
            if function is not None and function.arguments:
                yield ContentDelta(segment, function.arguments)

        if choice.finish_reason:
            finish_reason = choice.finish_reason
            if open_index is not None:
                yield SegmentStop(open_index)
                open_index = None

    yield TurnStop(
        stop_reason=map_finish_reason(finish_reason),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


class ModelProvider:
    """
    Streaming chat completion client for one model profile.

    Args:
        base_url: OpenAI-compatible endpoint
        api_key: API key
        model: Model name
        temperature: Sampling temperature
        max_tokens: Output token cap per turn
        timeout: Request timeout in seconds
        client: Pre-built OpenAI client (tests)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: int = 120,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or OpenAI(
            base_url=base_url,
            api_key=api_key or "not-needed",
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config: Any) -> "ModelProvider":
        """Build from an OrchestratorConfig or GeneratorConfig."""
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )

    def stream_turn(
        self,
        messages: list[dict],
        tools: Optional[list[dict]] = None,
    ) -> Iterator[Increment]:
        """
        Request one model turn and yield its increments.

        Raises:
            TransportError: If the provider cannot be reached or errors mid-stream
        """
        create_kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            create_kwargs["tools"] = tools

        try:
            stream = self._client.chat.completions.create(**create_kwargs)
        except openai.OpenAIError as e:
            logger.error(f"Model request failed ({self.model}): {e}")
            raise TransportError(str(e)) from e

        try:
            yield from increments_from_chunks(stream)
        except openai.OpenAIError as e:
            logger.error(f"Model stream failed ({self.model}): {e}")
            raise TransportError(str(e)) from e
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()

    def close(self) -> None:
        """Close the underlying OpenAI client."""
        try:
            self._client.close()
        except Exception as e:
            logger.debug(f"Error closing OpenAI client: {e}")
