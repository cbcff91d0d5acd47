"""
Agentic control loop.

Drives one run through ``Requesting -> Decoding -> (Dispatching ->
Requesting)* -> Finalizing -> Terminal``. Each model turn is decoded from an
increment stream; finished tool invocations are dispatched sequentially in
the order the model produced them and their results are appended to the
conversation before the model is asked again.

Termination checks run after every dispatch round:
    1. The iteration counter reached ``max_iterations``.
    2. A generation tool has run, at least two rounds have completed, and
       ``post_generation_rounds`` further rounds have been used.
    3. A tool result carries an unrecoverable error tag.

Only model transport errors and a failure to persist the final answer end a
run with a ``failure`` event. Cancellation ends it silently.
"""

import logging
from typing import Optional, Union

from ..errors import ErrorTag, PersistenceError, RunCancelled, TransportError
from ..models import (
    AgentRunState,
    LoopPhase,
    MalformedInvocation,
    StopReason,
    ToolInvocation,
    ToolResult,
)
from ..tools.registry import ToolContext, ToolRegistry
from ..tracing import TracingContext
from .decoder import DecodedTurn, ResponseDecoder
from .events import EventMultiplexer
from .message_builder import build_messages
from .tool_defs import build_tool_definitions

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = (
    "I wasn't able to put together a complete response this time. "
    "Please try rephrasing your request."
)

# Maximum raw argument text echoed back to the model for a malformed call
MAX_RAW_ARGUMENTS_ECHO = 200


class AgentLoop:
    """
    One canonical control loop.

    Args:
        provider: Model provider (``stream_turn(messages, tools)``)
        registry: Tool registry
        events: Event multiplexer for this run
        repository: Conversation repository used to persist the final answer
        tracing: Run-scoped tracing context
        system_prompt: System prompt prepended to every model turn
        max_iterations: Cap on completed dispatch rounds
        post_generation_rounds: Tool rounds still allowed after generation
    """

    def __init__(
        self,
        provider,
        registry: ToolRegistry,
        events: EventMultiplexer,
        repository=None,
        tracing: Optional[TracingContext] = None,
        system_prompt: Optional[str] = None,
        max_iterations: int = 5,
        post_generation_rounds: int = 1,
    ):
        self.provider = provider
        self.registry = registry
        self.events = events
        self.repository = repository
        self.tracing = tracing
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.post_generation_rounds = post_generation_rounds

    def run(self, state: AgentRunState) -> AgentRunState:
        """
        Run the loop to a terminal state.

        Args:
            state: Fresh run state whose conversation ends with the user turn

        Returns:
            The same state object, terminal
        """
        self.tracing = self.tracing or TracingContext(run_id=state.run_id)
        prefix = f"[{state.run_id}]"
        logger.info(f"{prefix} Starting agent loop (max_iterations={self.max_iterations})")

        try:
            self._run_loop(state)
        except RunCancelled:
            state.cancelled = True
            self._terminate(state, succeeded=False)
            logger.info(f"{prefix} Run cancelled by client disconnect")
        except TransportError as e:
            self._fail(state, ErrorTag.TRANSPORT_ERROR, f"Model provider error: {e}")
        finally:
            self._log_trace_summary(state)

        return state

    def _run_loop(self, state: AgentRunState) -> None:
        self.events.progress("Analyzing your request...")
        tools = build_tool_definitions(self.registry)

        while True:
            turn = self._request_turn(state, tools)

            if not self._wants_dispatch(turn):
                # Invocations without a tool-requested stop are not executed.
                state.conversation.append_assistant(
                    [s for s in turn.segments if not isinstance(s, ToolInvocation)]
                )
                self._finalize(state)
                return

            if turn.stop_reason == StopReason.TOOL_REQUESTED:
                calls = turn.tool_calls
                state.conversation.append_assistant(turn.segments, turn.malformed)
            else:
                # Only the malformed calls are answered; the rest were never requested.
                calls = turn.malformed
                state.conversation.append_assistant(
                    [s for s in turn.segments if not isinstance(s, ToolInvocation)],
                    turn.malformed,
                )
            fatal = self._dispatch_round(state, calls)
            state.iterations += 1

            if fatal is not None:
                logger.error(
                    f"{state_prefix(state)} Unrecoverable tool failure "
                    f"({fatal.error_tag.value}): {fatal.error_detail}"
                )
                self._finalize(
                    state,
                    answer=(
                        "I ran into a problem saving your work and had to stop: "
                        f"{fatal.error_detail}"
                    ),
                )
                return

            reason = self._termination_reason(state)
            if reason:
                logger.info(f"{state_prefix(state)} Finalizing: {reason}")
                self._finalize(state)
                return

    def _request_turn(self, state: AgentRunState, tools: list[dict]) -> DecodedTurn:
        """Requesting and Decoding phases for one model turn."""
        self._check_cancelled()
        state.phase = LoopPhase.REQUESTING
        state.model_turns += 1
        messages = build_messages(state.conversation, self.system_prompt)
        logger.debug(
            f"{state_prefix(state)} Model turn {state.model_turns}: "
            f"{len(messages)} messages, {len(tools)} tools"
        )

        decoder = ResponseDecoder(on_text=self.events.message_delta, label=state.run_id)
        with self.tracing.generation(
            name=f"model_turn_{state.model_turns}",
            model=getattr(self.provider, "model", "unknown"),
            input=messages,
        ) as gen:
            try:
                for increment in self.provider.stream_turn(messages, tools):
                    state.phase = LoopPhase.DECODING
                    self._check_cancelled()
                    decoder.feed(increment)
            except TransportError:
                gen.set_status("error")
                raise
            turn = decoder.finish()
            gen.set_output(turn.text[:2000])
            gen.set_usage(input_tokens=turn.input_tokens, output_tokens=turn.output_tokens)

        state.add_usage(turn.input_tokens, turn.output_tokens)
        state.stop_reasons.append(turn.stop_reason)
        state.turn_texts.append(turn.text)
        logger.debug(
            f"{state_prefix(state)} Turn {state.model_turns} decoded: "
            f"stop={turn.stop_reason.value}, invocations={len(turn.invocations)}, "
            f"malformed={len(turn.malformed)}"
        )
        return turn

    @staticmethod
    def _wants_dispatch(turn: DecodedTurn) -> bool:
        if turn.malformed:
            return True
        return turn.stop_reason == StopReason.TOOL_REQUESTED and bool(turn.invocations)

    def _dispatch_round(
        self,
        state: AgentRunState,
        calls: list[Union[ToolInvocation, MalformedInvocation]],
    ) -> Optional[ToolResult]:
        """
        Dispatching phase.

        Returns:
            The first unrecoverable result, if any
        """
        state.phase = LoopPhase.DISPATCHING
        for call in calls:
            self._check_cancelled()
            result = self._dispatch_one(state, call)
            self._check_cancelled()

            try:
                state.conversation.append_tool_result(result)
            except ValueError as e:
                logger.warning(f"{state_prefix(state)} Dropping tool result: {e}")
                continue

            if result.unrecoverable:
                return result
        return None

    def _dispatch_one(
        self,
        state: AgentRunState,
        call: Union[ToolInvocation, MalformedInvocation],
    ) -> ToolResult:
        prefix = state_prefix(state)

        if isinstance(call, MalformedInvocation):
            logger.warning(
                f"{prefix} Not dispatching {call.name} ({call.id}): {call.detail}"
            )
            raw = call.raw_arguments[:MAX_RAW_ARGUMENTS_ECHO]
            return ToolResult.fail(
                f"{call.detail}. Received arguments: {raw!r}. "
                "Send the complete arguments as one JSON object.",
                ErrorTag.MALFORMED_TOOL_ARGUMENTS,
                tool=call.name,
            ).for_invocation(call.id)

        context = ToolContext(
            run_id=state.run_id,
            user_id=state.user_id,
            business_profile_id=state.business_profile_id,
            conversation_id=state.conversation_id,
            message_id=state.user_message_id,
            events=self.events,
            invocation_id=call.id,
        )
        state.tools_used.append(call.name)
        if self.registry.is_generation(call.name) and state.generation_round is None:
            state.generation_round = state.iterations + 1

        logger.info(f"{prefix} Round {state.iterations + 1}: {call.name}")
        with self.tracing.span(name=f"tool:{call.name}", input=call.arguments) as span:
            result = self.registry.dispatch(call.name, call.arguments, context, call.id)
            preview = result.as_model_content()
            span.set_output({"result": preview[:500]})
            if not result.succeeded:
                span.set_status("error")

        if result.succeeded and result.metadata.get("artifact_id"):
            state.artifact_ids.append(result.metadata["artifact_id"])
        return result

    def _termination_reason(self, state: AgentRunState) -> Optional[str]:
        if state.iterations >= self.max_iterations:
            logger.warning(
                f"{state_prefix(state)} {ErrorTag.ITERATION_CAP_REACHED.value}: "
                f"{state.iterations} rounds"
            )
            return ErrorTag.ITERATION_CAP_REACHED.value
        if state.generation_round is not None and state.iterations >= 2:
            anchor = max(state.generation_round, 2)
            if state.iterations - anchor >= self.post_generation_rounds:
                return "post-generation round cap"
        return None

    def _final_answer(self, state: AgentRunState) -> str:
        if state.turn_texts and state.turn_texts[-1].strip():
            return state.turn_texts[-1]
        for text in reversed(state.turn_texts):
            if text.strip():
                return text
        return FALLBACK_ANSWER

    def _finalize(self, state: AgentRunState, answer: Optional[str] = None) -> None:
        """Finalizing phase: persist the answer, then final-answer and completed."""
        self._check_cancelled()
        state.phase = LoopPhase.FINALIZING
        answer = answer or self._final_answer(state)
        state.final_answer = answer

        message_id = None
        if self.repository is not None:
            try:
                message = self.repository.append_message(
                    state.conversation_id,
                    "assistant",
                    answer,
                    metadata={
                        "run_id": state.run_id,
                        "iterations": state.iterations,
                        "tools_used": list(state.tools_used),
                        "artifact_ids": list(state.artifact_ids),
                    },
                    input_tokens=state.input_tokens,
                    output_tokens=state.output_tokens,
                )
            except PersistenceError as e:
                self._fail(state, ErrorTag.PERSISTENCE_ERROR, f"Failed to save response: {e}")
                return
            message_id = message["id"]
            state.assistant_message_id = message_id

        self.events.final_answer(
            answer, message_id=message_id, conversation_id=state.conversation_id
        )
        self.events.completed(
            conversation_id=state.conversation_id,
            message_id=message_id,
            iterations=state.iterations,
            model_turns=state.model_turns,
            input_tokens=state.input_tokens,
            output_tokens=state.output_tokens,
            tools_used=list(state.tools_used),
            artifact_ids=list(state.artifact_ids),
        )
        self._terminate(state, succeeded=True)

    def _fail(self, state: AgentRunState, tag: ErrorTag, message: str) -> None:
        logger.error(f"{state_prefix(state)} Run failed ({tag.value}): {message}")
        state.last_error = message
        self.events.failure(tag.value, message, conversation_id=state.conversation_id)
        self._terminate(state, succeeded=False)

    @staticmethod
    def _terminate(state: AgentRunState, succeeded: bool) -> None:
        state.phase = LoopPhase.TERMINAL
        state.terminal = True
        state.succeeded = succeeded

    def _check_cancelled(self) -> None:
        if self.events.is_disconnected:
            raise RunCancelled("client disconnected")

    def _log_trace_summary(self, state: AgentRunState) -> None:
        """Log a compact trace summary."""
        prefix = state_prefix(state)
        logger.info("%s %s", prefix, "─" * 50)
        logger.info("%s TRACE SUMMARY", prefix)
        logger.info("%s %s", prefix, "─" * 50)
        logger.info(
            "%s iterations=%d model_turns=%d tokens=%d/%d",
            prefix,
            state.iterations,
            state.model_turns,
            state.input_tokens,
            state.output_tokens,
        )
        logger.info("%s tools: %s", prefix, ", ".join(state.tools_used) or "-")
        logger.info(
            "%s stop reasons: %s", prefix, ", ".join(r.value for r in state.stop_reasons) or "-"
        )
        if state.cancelled:
            logger.info("%s outcome: cancelled", prefix)
        elif state.succeeded:
            logger.info("%s outcome: completed", prefix)
        else:
            logger.error("%s outcome: failed (%s)", prefix, state.last_error)


def state_prefix(state: AgentRunState) -> str:
    return f"[{state.run_id}]"
