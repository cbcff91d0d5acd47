"""
Per-run mutable state owned by exactly one control loop.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .conversation import Conversation, StopReason


class LoopPhase(str, Enum):
    """Phases of the agentic control loop."""

    REQUESTING = "requesting"
    DECODING = "decoding"
    DISPATCHING = "dispatching"
    FINALIZING = "finalizing"
    TERMINAL = "terminal"


@dataclass
class AgentRunState:
    """Conversation so far plus the counters of a single run."""

    run_id: str
    conversation_id: str
    user_id: str
    business_profile_id: str
    conversation: Conversation
    user_message_id: Optional[str] = None
    phase: LoopPhase = LoopPhase.REQUESTING
    iterations: int = 0
    model_turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    terminal: bool = False
    succeeded: bool = False
    cancelled: bool = False
    last_error: Optional[str] = None
    final_answer: Optional[str] = None
    assistant_message_id: Optional[str] = None
    # Iteration counter value after the round that first ran a generation tool.
    generation_round: Optional[int] = None
    tools_used: list[str] = field(default_factory=list)
    artifact_ids: list[str] = field(default_factory=list)
    stop_reasons: list[StopReason] = field(default_factory=list)
    turn_texts: list[str] = field(default_factory=list)

    def add_usage(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
