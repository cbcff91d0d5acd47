"""
Outbound event multiplexer.

Every event a run produces goes through one ``EventMultiplexer`` so the remote
client sees a single ordered stream. Each event carries a monotonically
increasing sequence number. Exactly one ``completed`` or ``failure`` event
closes the stream; anything emitted afterwards is dropped and logged.
"""

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PROGRESS_NOTE = "progress-note"
    INSIGHT = "insight"
    MESSAGE_DELTA = "message-delta"
    ARTIFACT_BEGIN = "artifact-begin"
    ARTIFACT_CHUNK = "artifact-chunk"
    ARTIFACT_END = "artifact-end"
    FINAL_ANSWER = "final-answer"
    FAILURE = "failure"
    COMPLETED = "completed"


TERMINAL_EVENTS = frozenset({EventType.COMPLETED, EventType.FAILURE})


@dataclass(frozen=True)
class Event:
    sequence: int
    type: EventType
    payload: dict = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> dict:
        return {"sequence": self.sequence, "type": self.type.value, **self.payload}

    def to_sse(self) -> str:
        """Serialize as a Server-Sent Events frame."""
        return (
            f"id: {self.sequence}\n"
            f"event: {self.type.value}\n"
            f"data: {json.dumps(self.to_dict(), default=str)}\n\n"
        )


class EventSink(Protocol):
    def put(self, event: Event) -> None: ...


class ListSink:
    """Collects events in memory."""

    def __init__(self):
        self.events: list[Event] = []

    def put(self, event: Event) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


class QueueSink:
    """Hands events to another thread through an unbounded queue."""

    def __init__(self, maxsize: int = 0):
        self.queue: queue.Queue = queue.Queue(maxsize=maxsize)

    def put(self, event: Event) -> None:
        self.queue.put_nowait(event)

    def get(self, timeout: Optional[float] = None) -> Event:
        return self.queue.get(timeout=timeout)


class EventMultiplexer:
    """
    Single ordered outbound channel for one run.

    Args:
        sink: Where serialized events go (a queue drained by the HTTP layer,
            or a list in tests).
        label: Log prefix (usually the run id).
    """

    def __init__(self, sink: EventSink, label: str = "events"):
        self._sink = sink
        self._label = label
        self._lock = threading.Lock()
        self._sequence = 0
        self._closed = False
        self._disconnected = threading.Event()
        self._open_artifacts: set[str] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_disconnected(self) -> bool:
        return self._disconnected.is_set()

    def disconnect(self) -> None:
        """Mark the remote subscriber as gone. The run observes this and stops."""
        if not self._disconnected.is_set():
            logger.info(f"[{self._label}] Client disconnected")
        self._disconnected.set()

    def emit(self, event_type: EventType, payload: Optional[dict] = None) -> Optional[Event]:
        """
        Emit one event.

        Returns:
            The emitted event, or None when the stream is already closed or
            the event violates artifact phase ordering.
        """
        event_type = EventType(event_type)
        payload = dict(payload or {})
        with self._lock:
            if self._closed:
                logger.warning(
                    f"[{self._label}] Dropping {event_type.value} emitted after stream closed"
                )
                return None
            if not self._check_artifact_phase(event_type, payload):
                return None
            self._sequence += 1
            event = Event(sequence=self._sequence, type=event_type, payload=payload)
            if event.is_terminal:
                self._closed = True
            self._sink.put(event)
        logger.debug(f"[{self._label}] Event #{event.sequence} {event_type.value}")
        return event

    def _check_artifact_phase(self, event_type: EventType, payload: dict) -> bool:
        artifact_id = payload.get("artifact_id")
        if event_type == EventType.ARTIFACT_BEGIN:
            self._open_artifacts.add(artifact_id)
        elif event_type in (EventType.ARTIFACT_CHUNK, EventType.ARTIFACT_END):
            if artifact_id not in self._open_artifacts:
                logger.warning(
                    f"[{self._label}] Dropping {event_type.value} for artifact "
                    f"'{artifact_id}' that has not begun"
                )
                return False
            if event_type == EventType.ARTIFACT_END:
                self._open_artifacts.discard(artifact_id)
        return True

    # Convenience emitters

    def progress(self, message: str, **extra: Any) -> Optional[Event]:
        return self.emit(EventType.PROGRESS_NOTE, {"message": message, **extra})

    def insight(self, kind: str, content: Any, **extra: Any) -> Optional[Event]:
        return self.emit(EventType.INSIGHT, {"kind": kind, "content": content, **extra})

    def message_delta(self, text: str) -> Optional[Event]:
        return self.emit(EventType.MESSAGE_DELTA, {"text": text})

    def artifact_begin(self, artifact_id: str, artifact_type: str, title: str) -> Optional[Event]:
        return self.emit(
            EventType.ARTIFACT_BEGIN,
            {"artifact_id": artifact_id, "artifact_type": artifact_type, "title": title},
        )

    def artifact_chunk(self, artifact_id: str, text: str) -> Optional[Event]:
        return self.emit(EventType.ARTIFACT_CHUNK, {"artifact_id": artifact_id, "text": text})

    def artifact_end(self, artifact_id: str, **extra: Any) -> Optional[Event]:
        return self.emit(EventType.ARTIFACT_END, {"artifact_id": artifact_id, **extra})

    def final_answer(self, content: str, **extra: Any) -> Optional[Event]:
        return self.emit(EventType.FINAL_ANSWER, {"content": content, **extra})

    def failure(self, tag: str, message: str, **extra: Any) -> Optional[Event]:
        return self.emit(EventType.FAILURE, {"tag": tag, "message": message, **extra})

    def completed(self, **summary: Any) -> Optional[Event]:
        return self.emit(EventType.COMPLETED, summary)
