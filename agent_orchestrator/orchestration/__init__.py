"""
Streaming agent orchestration.

Increment decoding, the outbound event channel and conversation rendering.
The control loop and the tool catalogue live in ``orchestration.loop`` and
``orchestration.tool_defs``; import them from there directly, since tools
depend on the decoder and events defined here.
"""

from .decoder import DecodedTurn, ResponseDecoder
from .events import (
    Event,
    EventMultiplexer,
    EventType,
    ListSink,
    QueueSink,
    TERMINAL_EVENTS,
)
from .increments import ContentDelta, Increment, SegmentKind, SegmentStart, SegmentStop, TurnStop
from .message_builder import build_messages

__all__ = [
    "ContentDelta",
    "DecodedTurn",
    "Event",
    "EventMultiplexer",
    "EventType",
    "Increment",
    "ListSink",
    "QueueSink",
    "ResponseDecoder",
    "SegmentKind",
    "SegmentStart",
    "SegmentStop",
    "TERMINAL_EVENTS",
    "TurnStop",
    "build_messages",
]
