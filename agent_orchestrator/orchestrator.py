"""
Chat orchestrator.

Entry point for one chat request: resolves the conversation, persists the
user message, rebuilds the history window and drives an ``AgentLoop`` run
whose events go to the caller's multiplexer.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from .dependencies import Dependencies
from .errors import AgentError, ErrorTag
from .models import AgentRunState, Conversation, TextSegment
from .orchestration.events import EventMultiplexer
from .orchestration.loop import AgentLoop
from .tracing import TracingContext

logger = logging.getLogger(__name__)


@dataclass
class ChatRequest:
    """One user message addressed to the agent."""

    message: str
    user_id: str
    business_profile_id: str
    conversation_id: Optional[str] = None


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:8]}"


def conversation_from_history(history: list[dict]) -> Conversation:
    """Rebuild a conversation from persisted user and assistant messages."""
    conversation = Conversation()
    for message in history:
        content = message.get("content") or ""
        if message.get("role") == "user":
            conversation.append_user(content)
        elif message.get("role") == "assistant":
            conversation.append_assistant([TextSegment(content)])
    return conversation


class ChatOrchestrator:
    """
    Runs chat requests against shared dependencies.

    Args:
        deps: Process-wide services
    """

    def __init__(self, deps: Dependencies):
        self.deps = deps

    def run(
        self,
        request: ChatRequest,
        events: EventMultiplexer,
        run_id: Optional[str] = None,
    ) -> Optional[AgentRunState]:
        """
        Execute one run. All outcomes are reported through ``events``.

        Returns:
            The terminal run state, or None if the run failed before the loop
            started
        """
        run_id = run_id or new_run_id()
        prefix = f"[{run_id}]"
        repository = self.deps.repository
        logger.info(
            f"{prefix} Chat request from user {request.user_id} "
            f"(conversation={request.conversation_id or 'new'})"
        )

        try:
            conversation = repository.get_or_create(
                request.conversation_id,
                request.user_id,
                request.business_profile_id,
                first_message=request.message,
            )
            conversation_id = conversation["id"]
            history = repository.load_history(conversation_id)
            user_message = repository.append_message(conversation_id, "user", request.message)
        except AgentError as e:
            logger.error(f"{prefix} Could not prepare conversation: {e}")
            events.failure(e.tag.value, str(e), conversation_id=request.conversation_id)
            return None

        state = AgentRunState(
            run_id=run_id,
            conversation_id=conversation_id,
            user_id=request.user_id,
            business_profile_id=request.business_profile_id,
            conversation=conversation_from_history(history),
            user_message_id=user_message["id"],
        )
        state.conversation.append_user(request.message)
        logger.debug(f"{prefix} Loaded {len(history)} history messages")

        tracing = TracingContext(
            run_id=run_id,
            client=self.deps.tracing,
            session_id=conversation_id,
            user_id=request.user_id,
        )
        tracing.start_trace(
            name="agent_run",
            query=request.message,
            metadata={"business_profile_id": request.business_profile_id},
        )

        orchestrator_config = self.deps.config.orchestrator
        loop = AgentLoop(
            provider=self.deps.provider,
            registry=self.deps.registry,
            events=events,
            repository=repository,
            tracing=tracing,
            system_prompt=orchestrator_config.system_prompt,
            max_iterations=orchestrator_config.max_iterations,
            post_generation_rounds=orchestrator_config.post_generation_rounds,
        )
        try:
            loop.run(state)
        finally:
            if state.cancelled:
                status = "cancelled"
            elif state.succeeded:
                status = "success"
            else:
                status = "error"
            tracing.end_trace(
                output=state.final_answer,
                status=status,
                metadata={
                    "iterations": state.iterations,
                    "tools_used": state.tools_used,
                    "input_tokens": state.input_tokens,
                    "output_tokens": state.output_tokens,
                },
            )
        return state


def failure_tag(error: Exception) -> str:
    """Error tag reported for an exception that escaped a run."""
    if isinstance(error, AgentError):
        return error.tag.value
    return ErrorTag.TOOL_EXECUTION_ERROR.value
