"""
Conversation data model.

A conversation is an ordered sequence of turns. Assistant turns carry content
segments (text or finished tool invocations); tool-result turns answer one
invocation of a preceding assistant turn.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterator, Optional, Union

from ..errors import ErrorTag, UNRECOVERABLE_TAGS


class Role(str, Enum):
    """Author of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool-result"


class StopReason(str, Enum):
    """Why the model ended a turn."""

    NORMAL = "normal"
    TOOL_REQUESTED = "tool-requested"
    LENGTH_LIMIT = "length-limit"
    OTHER = "other"


@dataclass(frozen=True)
class TextSegment:
    """Text emitted by the model."""

    value: str


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call whose argument JSON has been fully received and parsed."""

    id: str
    name: str
    arguments: Any


@dataclass(frozen=True)
class MalformedInvocation:
    """A tool call whose arguments never formed valid JSON. Never dispatched."""

    id: str
    name: str
    raw_arguments: str
    detail: str


Segment = Union[TextSegment, ToolInvocation]


@dataclass(frozen=True)
class ToolResult:
    """Uniform success/failure result returned by every tool dispatch."""

    invocation_id: str = ""
    succeeded: bool = True
    payload: Optional[str] = None
    error_detail: Optional[str] = None
    error_tag: Optional[ErrorTag] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, payload: str, **metadata: Any) -> "ToolResult":
        return cls(succeeded=True, payload=payload, metadata=metadata)

    @classmethod
    def fail(
        cls,
        detail: str,
        tag: ErrorTag = ErrorTag.TOOL_EXECUTION_ERROR,
        **metadata: Any,
    ) -> "ToolResult":
        return cls(succeeded=False, error_detail=detail, error_tag=tag, metadata=metadata)

    def for_invocation(self, invocation_id: str) -> "ToolResult":
        """Return a copy bound to the given invocation id."""
        return replace(self, invocation_id=invocation_id)

    @property
    def unrecoverable(self) -> bool:
        return not self.succeeded and self.error_tag in UNRECOVERABLE_TAGS

    def as_model_content(self) -> str:
        """Render the result the way the model sees it on the next turn."""
        if self.succeeded:
            return self.payload or "No output"
        tag = self.error_tag.value if self.error_tag else "error"
        return f"Error ({tag}): {self.error_detail}"


@dataclass(frozen=True)
class Turn:
    """One conversation entry."""

    ordinal: int
    role: Role
    segments: tuple[Segment, ...] = ()
    rejected: tuple[MalformedInvocation, ...] = ()
    result: Optional[ToolResult] = None

    @property
    def text(self) -> str:
        return "".join(s.value for s in self.segments if isinstance(s, TextSegment))

    @property
    def invocations(self) -> list[ToolInvocation]:
        return [s for s in self.segments if isinstance(s, ToolInvocation)]

    @property
    def call_ids(self) -> list[str]:
        """Ids of every tool call in this turn, well-formed or not."""
        return [i.id for i in self.invocations] + [r.id for r in self.rejected]


class Conversation:
    """Append-only ordered list of turns."""

    def __init__(self, turns: Optional[list[Turn]] = None) -> None:
        self._turns: list[Turn] = []
        for turn in turns or []:
            self._check_ordinal(turn.ordinal)
            self._turns.append(turn)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def _next_ordinal(self) -> int:
        return self._turns[-1].ordinal + 1 if self._turns else 1

    def _check_ordinal(self, ordinal: int) -> None:
        if self._turns and ordinal <= self._turns[-1].ordinal:
            raise ValueError(
                f"Turn ordinal {ordinal} does not follow {self._turns[-1].ordinal}"
            )

    def append_user(self, text: str) -> Turn:
        turn = Turn(
            ordinal=self._next_ordinal(),
            role=Role.USER,
            segments=(TextSegment(text),),
        )
        self._turns.append(turn)
        return turn

    def append_assistant(
        self,
        segments: list[Segment],
        rejected: Optional[list[MalformedInvocation]] = None,
    ) -> Turn:
        turn = Turn(
            ordinal=self._next_ordinal(),
            role=Role.ASSISTANT,
            segments=tuple(segments),
            rejected=tuple(rejected or ()),
        )
        self._turns.append(turn)
        return turn

    def append_tool_result(self, result: ToolResult) -> Turn:
        """Append a tool result answering a pending invocation.

        Raises:
            ValueError: If no preceding assistant turn issued the invocation id,
                or the invocation was already answered.
        """
        if result.invocation_id not in self.pending_call_ids():
            raise ValueError(
                f"No pending tool invocation with id '{result.invocation_id}'"
            )
        turn = Turn(ordinal=self._next_ordinal(), role=Role.TOOL_RESULT, result=result)
        self._turns.append(turn)
        return turn

    def pending_call_ids(self) -> set[str]:
        """Invocation ids issued by assistant turns that have no result yet."""
        issued: set[str] = set()
        answered: set[str] = set()
        for turn in self._turns:
            if turn.role == Role.ASSISTANT:
                issued.update(turn.call_ids)
            elif turn.role == Role.TOOL_RESULT and turn.result is not None:
                answered.add(turn.result.invocation_id)
        return issued - answered
