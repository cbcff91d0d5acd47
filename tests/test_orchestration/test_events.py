"""Tests for the outbound event multiplexer."""

import json
import threading

from agent_orchestrator.orchestration.events import (
    EventMultiplexer,
    EventType,
    ListSink,
    QueueSink,
)


class TestSequencing:
    def test_sequence_numbers_start_at_one(self, events, sink):
        events.progress("one")
        events.insight("canon_summary", "Canon loaded: 3 rules")
        events.message_delta("hi")

        assert [e.sequence for e in sink.events] == [1, 2, 3]
        assert sink.types() == ["progress-note", "insight", "message-delta"]

    def test_concurrent_emitters_get_unique_sequences(self, events, sink):
        def emit_many():
            for i in range(50):
                events.progress(f"note {i}")

        threads = [threading.Thread(target=emit_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        sequences = [e.sequence for e in sink.events]
        assert sorted(sequences) == list(range(1, 201))
        assert sequences == sorted(sequences)


class TestTermination:
    def test_completed_closes_stream(self, events, sink):
        events.final_answer("Done")
        events.completed(iterations=1)
        dropped = events.progress("too late")

        assert dropped is None
        assert events.closed is True
        assert sink.types() == ["final-answer", "completed"]

    def test_failure_closes_stream(self, events, sink):
        events.failure("transport-error", "unreachable")
        assert events.completed() is None
        assert sink.types() == ["failure"]

    def test_drop_after_close_is_logged(self, events, caplog):
        events.completed()
        with caplog.at_level("WARNING"):
            events.message_delta("late")
        assert "emitted after stream closed" in caplog.text


class TestArtifactPhases:
    def test_chunk_before_begin_dropped(self, events, sink):
        assert events.artifact_chunk("a-1", "text") is None
        assert events.artifact_end("a-1") is None
        assert sink.events == []

    def test_full_artifact_lifecycle(self, events, sink):
        events.artifact_begin("a-1", "email", "Email: Welcome")
        events.artifact_chunk("a-1", "Subject: ")
        events.artifact_chunk("a-1", "Hi")
        events.artifact_end("a-1", status="complete")
        events.artifact_chunk("a-1", "after end")

        assert sink.types() == [
            "artifact-begin",
            "artifact-chunk",
            "artifact-chunk",
            "artifact-end",
        ]
        assert sink.events[0].payload == {
            "artifact_id": "a-1",
            "artifact_type": "email",
            "title": "Email: Welcome",
        }


class TestDisconnect:
    def test_disconnect_flag(self, events):
        assert events.is_disconnected is False
        events.disconnect()
        events.disconnect()
        assert events.is_disconnected is True


class TestSerialization:
    def test_sse_frame(self):
        sink = ListSink()
        EventMultiplexer(sink).final_answer("Hello", message_id="m-1")
        frame = sink.events[0].to_sse()

        lines = frame.split("\n")
        assert lines[0] == "id: 1"
        assert lines[1] == "event: final-answer"
        assert json.loads(lines[2][len("data: "):]) == {
            "sequence": 1,
            "type": "final-answer",
            "content": "Hello",
            "message_id": "m-1",
        }
        assert frame.endswith("\n\n")

    def test_queue_sink(self):
        sink = QueueSink()
        EventMultiplexer(sink).progress("queued")
        event = sink.get(timeout=1)
        assert event.type == EventType.PROGRESS_NOTE
        assert event.payload["message"] == "queued"
