"""Tests for the incremental response decoder."""

from agent_orchestrator.models import (
    MalformedInvocation,
    StopReason,
    TextSegment,
    ToolInvocation,
)
from agent_orchestrator.orchestration.decoder import ResponseDecoder
from agent_orchestrator.orchestration.increments import (
    ContentDelta,
    SegmentKind,
    SegmentStart,
    SegmentStop,
    TurnStop,
)


def _tool_start(index: int, tool_id: str = "call_1", name: str = "fetch_canon") -> SegmentStart:
    return SegmentStart(index, SegmentKind.TOOL, tool_id=tool_id, tool_name=name)


class TestTextSegments:
    def test_text_forwarded_live(self):
        seen = []
        decoder = ResponseDecoder(on_text=seen.append)

        decoder.feed(SegmentStart(0, SegmentKind.TEXT))
        decoder.feed(ContentDelta(0, "Hel"))
        assert seen == ["Hel"]
        decoder.feed(ContentDelta(0, "lo"))
        decoder.feed(SegmentStop(0))
        turn = decoder.finish()

        assert seen == ["Hel", "lo"]
        assert turn.segments == [TextSegment("Hello")]
        assert turn.text == "Hello"

    def test_empty_fragments_not_forwarded(self):
        seen = []
        decoder = ResponseDecoder(on_text=seen.append)
        decoder.decode(
            [
                SegmentStart(0, SegmentKind.TEXT),
                ContentDelta(0, ""),
                ContentDelta(0, "ok"),
                SegmentStop(0),
                TurnStop(StopReason.NORMAL),
            ]
        )
        assert seen == ["ok"]

    def test_open_text_finalized_at_end(self):
        turn = ResponseDecoder().decode(
            [SegmentStart(0, SegmentKind.TEXT), ContentDelta(0, "partial")]
        )
        assert turn.segments == [TextSegment("partial")]
        assert turn.stop_reason == StopReason.OTHER


class TestToolSegments:
    def test_arguments_parsed_only_at_stop(self):
        decoder = ResponseDecoder()
        decoder.feed(_tool_start(0))
        decoder.feed(ContentDelta(0, '{"category": "all", '))
        decoder.feed(ContentDelta(0, '"content_type": "email"}'))
        decoder.feed(SegmentStop(0))
        decoder.feed(TurnStop(StopReason.TOOL_REQUESTED, 12, 4))
        turn = decoder.finish()

        assert turn.invocations == [
            ToolInvocation(
                id="call_1",
                name="fetch_canon",
                arguments={"category": "all", "content_type": "email"},
            )
        ]
        assert turn.stop_reason == StopReason.TOOL_REQUESTED
        assert turn.input_tokens == 12
        assert turn.output_tokens == 4

    def test_tool_fragments_never_reach_on_text(self):
        seen = []
        ResponseDecoder(on_text=seen.append).decode(
            [_tool_start(0), ContentDelta(0, "{}"), SegmentStop(0)]
        )
        assert seen == []

    def test_empty_arguments_parse_to_empty_object(self):
        turn = ResponseDecoder().decode([_tool_start(0), SegmentStop(0)])
        assert turn.invocations[0].arguments == {}

    def test_invalid_json_is_malformed(self):
        turn = ResponseDecoder().decode(
            [_tool_start(0), ContentDelta(0, '{"category": '), SegmentStop(0)]
        )
        assert turn.invocations == []
        assert len(turn.malformed) == 1
        malformed = turn.malformed[0]
        assert malformed.id == "call_1"
        assert malformed.raw_arguments == '{"category": '
        assert malformed.detail.startswith("invalid JSON")
        assert turn.has_tool_calls is True

    def test_stream_ends_mid_arguments(self):
        turn = ResponseDecoder().decode(
            [_tool_start(0), ContentDelta(0, '{"query": "welc')]
        )
        assert turn.invocations == []
        assert turn.malformed == [
            MalformedInvocation(
                id="call_1",
                name="fetch_canon",
                raw_arguments='{"query": "welc',
                detail="argument stream ended before the segment closed",
            )
        ]


class TestOrdering:
    def test_interleaved_segments_keep_start_order(self):
        turn = ResponseDecoder().decode(
            [
                SegmentStart(0, SegmentKind.TEXT),
                _tool_start(1, "call_a", "knowledge_search"),
                ContentDelta(0, "Let me look. "),
                ContentDelta(1, '{"query": "offer"}'),
                _tool_start(2, "call_b", "web_search"),
                ContentDelta(2, '{"query": "trends"}'),
                SegmentStop(2),
                SegmentStop(1),
                SegmentStop(0),
                TurnStop(StopReason.TOOL_REQUESTED),
            ]
        )
        assert isinstance(turn.segments[0], TextSegment)
        assert [i.id for i in turn.invocations] == ["call_a", "call_b"]
        assert [c.id for c in turn.tool_calls] == ["call_a", "call_b"]

    def test_tool_calls_include_malformed_in_order(self):
        turn = ResponseDecoder().decode(
            [
                _tool_start(0, "call_a"),
                ContentDelta(0, "{bad"),
                SegmentStop(0),
                _tool_start(1, "call_b"),
                ContentDelta(1, "{}"),
                SegmentStop(1),
            ]
        )
        assert [c.id for c in turn.tool_calls] == ["call_a", "call_b"]
        assert isinstance(turn.tool_calls[0], MalformedInvocation)
        assert isinstance(turn.tool_calls[1], ToolInvocation)

    def test_duplicate_tool_ids_made_unique(self):
        turn = ResponseDecoder().decode(
            [
                _tool_start(0, "call_1", "frobnicate"),
                ContentDelta(0, "{}"),
                SegmentStop(0),
                _tool_start(1, "call_1", "fetch_canon"),
                ContentDelta(1, "{}"),
                SegmentStop(1),
                TurnStop(StopReason.TOOL_REQUESTED),
            ]
        )
        assert [i.id for i in turn.invocations] == ["call_1", "call_1_1"]
        assert turn.anomalies == 1


class TestAnomalies:
    def test_delta_after_stop_ignored(self):
        turn = ResponseDecoder().decode(
            [
                SegmentStart(0, SegmentKind.TEXT),
                ContentDelta(0, "done"),
                SegmentStop(0),
                ContentDelta(0, " late"),
            ]
        )
        assert turn.text == "done"
        assert turn.anomalies == 1

    def test_delta_for_unknown_segment_ignored(self):
        turn = ResponseDecoder().decode([ContentDelta(7, "ghost")])
        assert turn.segments == []
        assert turn.anomalies == 1

    def test_duplicate_start_ignored(self):
        turn = ResponseDecoder().decode(
            [
                SegmentStart(0, SegmentKind.TEXT),
                SegmentStart(0, SegmentKind.TEXT),
                ContentDelta(0, "once"),
                SegmentStop(0),
            ]
        )
        assert turn.segments == [TextSegment("once")]
        assert turn.anomalies == 1

    def test_anomaly_logged(self, caplog):
        with caplog.at_level("WARNING"):
            ResponseDecoder(label="run-x").decode([SegmentStop(3)])
        assert "[run-x] Protocol anomaly" in caplog.text
