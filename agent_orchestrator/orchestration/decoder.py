"""
Incremental response decoder.

Assembles one model turn from a stream of increments into finished content
segments. Text is forwarded live through ``on_text``; tool argument fragments
are buffered raw and parsed as a single JSON value only when their segment
stops, so a partially received invocation can never be dispatched.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

from ..models import (
    MalformedInvocation,
    Segment,
    StopReason,
    TextSegment,
    ToolInvocation,
)
from .increments import (
    ContentDelta,
    Increment,
    SegmentKind,
    SegmentStart,
    SegmentStop,
    TurnStop,
)

logger = logging.getLogger(__name__)


@dataclass
class _OpenSegment:
    index: int
    kind: SegmentKind
    tool_id: str = ""
    tool_name: str = ""
    parts: list[str] = field(default_factory=list)
    # Order in which the segment started; finished segments keep this order.
    position: int = 0

    @property
    def buffer(self) -> str:
        return "".join(self.parts)


@dataclass
class DecodedTurn:
    """Everything one model turn produced."""

    segments: list[Segment]
    malformed: list[MalformedInvocation]
    stop_reason: StopReason
    input_tokens: int = 0
    output_tokens: int = 0
    anomalies: int = 0
    # Well-formed and malformed tool calls in the order their segments started.
    tool_calls: list[Union[ToolInvocation, MalformedInvocation]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(s.value for s in self.segments if isinstance(s, TextSegment))

    @property
    def invocations(self) -> list[ToolInvocation]:
        return [s for s in self.segments if isinstance(s, ToolInvocation)]

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.invocations or self.malformed)


class ResponseDecoder:
    """
    Stateful decoder for exactly one model turn.

    Args:
        on_text: Called with every text fragment as soon as it arrives.
        label: Log prefix (usually the run id).
    """

    def __init__(
        self,
        on_text: Optional[Callable[[str], None]] = None,
        label: str = "decoder",
    ):
        self._on_text = on_text
        self._label = label
        self._open: dict[int, _OpenSegment] = {}
        self._stopped: set[int] = set()
        self._tool_ids: set[str] = set()
        self._finished: list[tuple[int, object]] = []
        self._next_position = 0
        self._stop_reason: Optional[StopReason] = None
        self._input_tokens = 0
        self._output_tokens = 0
        self._anomalies = 0

    def feed(self, increment: Increment) -> None:
        """Apply a single increment."""
        if isinstance(increment, SegmentStart):
            self._start(increment)
        elif isinstance(increment, ContentDelta):
            self._delta(increment)
        elif isinstance(increment, SegmentStop):
            self._stop(increment.index)
        elif isinstance(increment, TurnStop):
            self._stop_reason = increment.stop_reason
            self._input_tokens = increment.input_tokens
            self._output_tokens = increment.output_tokens
        else:
            self._anomaly(f"unknown increment {type(increment).__name__}")

    def decode(self, increments: Iterable[Increment]) -> DecodedTurn:
        """Consume a whole iterator of increments and finish the turn."""
        for increment in increments:
            self.feed(increment)
        return self.finish()

    def finish(self) -> DecodedTurn:
        """
        Close the turn.

        Text segments still open are finalized as received. Tool segments still
        open never received their full argument buffer and are reported as
        malformed.
        """
        for index in sorted(self._open, key=lambda i: self._open[i].position):
            segment = self._open[index]
            if segment.kind == SegmentKind.TOOL:
                logger.warning(
                    f"[{self._label}] Tool segment {index} ({segment.tool_name}) "
                    f"still open at end of turn"
                )
                self._finished.append(
                    (
                        segment.position,
                        MalformedInvocation(
                            id=segment.tool_id,
                            name=segment.tool_name,
                            raw_arguments=segment.buffer,
                            detail="argument stream ended before the segment closed",
                        ),
                    )
                )
            else:
                self._finished.append((segment.position, TextSegment(segment.buffer)))
        self._open.clear()

        if self._stop_reason is None:
            logger.warning(f"[{self._label}] Stream ended without a turn stop")

        ordered = [item for _, item in sorted(self._finished, key=lambda p: p[0])]
        return DecodedTurn(
            segments=[i for i in ordered if not isinstance(i, MalformedInvocation)],
            malformed=[i for i in ordered if isinstance(i, MalformedInvocation)],
            stop_reason=self._stop_reason or StopReason.OTHER,
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            anomalies=self._anomalies,
            tool_calls=[i for i in ordered if not isinstance(i, TextSegment)],
        )

    def _start(self, inc: SegmentStart) -> None:
        if inc.index in self._open or inc.index in self._stopped:
            self._anomaly(f"segment {inc.index} started twice")
            return
        tool_id = inc.tool_id
        if inc.kind == SegmentKind.TOOL:
            tool_id = self._unique_tool_id(inc.tool_id, inc.index)
        self._open[inc.index] = _OpenSegment(
            index=inc.index,
            kind=inc.kind,
            tool_id=tool_id,
            tool_name=inc.tool_name,
            position=self._next_position,
        )
        self._next_position += 1

    def _unique_tool_id(self, tool_id: str, index: int) -> str:
        # Every invocation needs its own result turn, so ids must not repeat.
        unique = tool_id
        suffix = index
        while unique in self._tool_ids:
            unique = f"{tool_id}_{suffix}"
            suffix += 1
        if unique != tool_id:
            self._anomaly(f"duplicate tool id {tool_id!r} renamed to {unique!r}")
        self._tool_ids.add(unique)
        return unique

    def _delta(self, inc: ContentDelta) -> None:
        segment = self._open.get(inc.index)
        if segment is None:
            state = "stopped" if inc.index in self._stopped else "unknown"
            self._anomaly(f"delta for {state} segment {inc.index} ignored")
            return
        segment.parts.append(inc.fragment)
        if segment.kind == SegmentKind.TEXT and self._on_text and inc.fragment:
            self._on_text(inc.fragment)

    def _stop(self, index: int) -> None:
        segment = self._open.pop(index, None)
        if segment is None:
            self._anomaly(f"stop for segment {index} that is not open")
            return
        self._stopped.add(index)

        if segment.kind == SegmentKind.TEXT:
            self._finished.append((segment.position, TextSegment(segment.buffer)))
            return

        raw = segment.buffer
        try:
            arguments = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(
                f"[{self._label}] Malformed arguments for {segment.tool_name} "
                f"({segment.tool_id}): {e}"
            )
            self._finished.append(
                (
                    segment.position,
                    MalformedInvocation(
                        id=segment.tool_id,
                        name=segment.tool_name,
                        raw_arguments=raw,
                        detail=f"invalid JSON: {e}",
                    ),
                )
            )
            return

        self._finished.append(
            (
                segment.position,
                ToolInvocation(id=segment.tool_id, name=segment.tool_name, arguments=arguments),
            )
        )

    def _anomaly(self, detail: str) -> None:
        self._anomalies += 1
        logger.warning(f"[{self._label}] Protocol anomaly: {detail}")
