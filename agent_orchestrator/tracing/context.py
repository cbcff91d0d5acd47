"""
Run-scoped tracing context using Langfuse SDK v3.

One trace per agent run. Model turns are recorded as generations and tool
dispatches as spans, linked to the root span through explicit trace context
propagation. Everything degrades to a no-op when the client is disabled.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

from langfuse.types import TraceContext

from .client import TracingClient

logger = logging.getLogger(__name__)


@dataclass
class ObservationContext:
    """A single span or generation. Tracks output, usage and status."""

    name: str
    client: Optional[TracingClient] = None
    as_type: str = "span"
    model: Optional[str] = None
    input: Optional[Any] = None
    metadata: Optional[dict] = None
    model_parameters: Optional[dict] = None
    trace_context: Optional[TraceContext] = None
    _context_manager: Any = field(default=None, repr=False)
    _observation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _usage: Optional[dict] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.client.enabled

    def start(self) -> None:
        if not self.enabled:
            return
        self._start_time = time.time()
        kwargs: dict[str, Any] = {
            "trace_context": self.trace_context,
            "as_type": self.as_type,
            "name": self.name,
            "input": self.input,
            "metadata": self.metadata,
        }
        if self.as_type == "generation":
            kwargs["model"] = self.model
            kwargs["model_parameters"] = self.model_parameters
        try:
            self._context_manager = self.client.client.start_as_current_observation(
                **kwargs
            )
            self._observation = self._context_manager.__enter__()
        except Exception as e:
            logger.warning(f"Failed to start {self.as_type} '{self.name}': {e}")
            self._observation = None

    def end(self) -> None:
        if not self.enabled or not self._observation:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            update_kwargs: dict[str, Any] = {
                "metadata": {"status": self._status, "duration_ms": round(duration_ms, 2)}
            }
            if self._output is not None:
                update_kwargs["output"] = self._output
            if self._usage:
                update_kwargs["usage_details"] = self._usage
            self._observation.update(**update_kwargs)
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"Failed to end {self.as_type} '{self.name}': {e}")

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status

    def set_usage(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
        self._usage = {
            "input": input_tokens,
            "output": output_tokens,
            "total": input_tokens + output_tokens,
        }


@dataclass
class TracingContext:
    """
    Tracing context for one agent run.

    Usage:
        tracing = TracingContext(run_id, client=deps.tracing, user_id=user_id)
        tracing.start_trace(name="agent_run", query=message)
        with tracing.generation("model_turn", model="gpt-4o") as gen:
            ...
            gen.set_usage(input_tokens=120, output_tokens=40)
        tracing.end_trace(output=answer)
    """

    run_id: str
    client: Optional[TracingClient] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    _context_manager: Any = field(default=None, repr=False)
    _root_span: Any = field(default=None, repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)
    _trace_id: Optional[str] = field(default=None, repr=False)
    _root_span_id: Optional[str] = field(default=None, repr=False)

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.client.enabled

    def start_trace(
        self,
        name: str = "agent_run",
        query: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Open the root span that acts as the trace container."""
        if not self.enabled:
            return

        trace_metadata = {"run_id": self.run_id, **(metadata or {})}
        try:
            self._context_manager = self.client.client.start_as_current_observation(
                as_type="span",
                name=name,
                input={"query": query} if query else None,
                metadata=trace_metadata,
            )
            self._root_span = self._context_manager.__enter__()
            self._trace_id = getattr(self._root_span, "trace_id", None)
            self._root_span_id = getattr(self._root_span, "id", None)
            self._root_span.update_trace(user_id=self.user_id, session_id=self.session_id)
            self._start_time = time.time()
        except Exception as e:
            logger.warning(f"[{self.run_id}] Failed to start trace: {e}")
            self._root_span = None

    def get_trace_context(self) -> Optional[TraceContext]:
        if not self._trace_id or not self._root_span_id:
            return None
        return TraceContext(trace_id=self._trace_id, parent_span_id=self._root_span_id)

    def end_trace(
        self,
        output: Optional[str] = None,
        status: str = "success",
        metadata: Optional[dict] = None,
    ) -> None:
        if not self.enabled or not self._root_span:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            self._root_span.update(
                output=output,
                metadata={
                    "status": status,
                    "duration_ms": round(duration_ms, 2),
                    **(metadata or {}),
                },
            )
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"[{self.run_id}] Failed to end trace: {e}")
        self.client.flush()

    @contextmanager
    def span(
        self,
        name: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> Generator[ObservationContext, None, None]:
        """Record a tool dispatch or other unit of work."""
        observation = ObservationContext(
            name=name,
            client=self.client,
            input=input,
            metadata=metadata,
            trace_context=self.get_trace_context(),
        )
        try:
            observation.start()
            yield observation
        finally:
            observation.end()

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ) -> Generator[ObservationContext, None, None]:
        """Record one model turn."""
        observation = ObservationContext(
            name=name,
            client=self.client,
            as_type="generation",
            model=model,
            input=input,
            metadata=metadata,
            model_parameters=model_parameters,
            trace_context=self.get_trace_context(),
        )
        try:
            observation.start()
            yield observation
        finally:
            observation.end()
