"""
Incremental model-turn protocol.

A model turn arrives as a pull-based iterator of increments. Segments are
addressed by index; text and tool segments may interleave.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from ..models import StopReason


class SegmentKind(str, Enum):
    TEXT = "text"
    TOOL = "tool"


@dataclass(frozen=True)
class SegmentStart:
    index: int
    kind: SegmentKind
    tool_id: str = ""
    tool_name: str = ""


@dataclass(frozen=True)
class ContentDelta:
    index: int
    fragment: str


@dataclass(frozen=True)
class SegmentStop:
    index: int


@dataclass(frozen=True)
class TurnStop:
    stop_reason: StopReason
    input_tokens: int = 0
    output_tokens: int = 0


Increment = Union[SegmentStart, ContentDelta, SegmentStop, TurnStop]
