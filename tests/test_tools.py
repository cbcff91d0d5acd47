"""Tests for the agent tools."""

import pytest

from agent_orchestrator.errors import ErrorTag, ProviderError, TransportError
from agent_orchestrator.providers import InMemorySimilaritySearch
from agent_orchestrator.tools.canon import format_canon_for_llm
from agent_orchestrator.tools.content import (
    ContentBrief,
    ContentExecutionArgs,
    artifact_title,
    build_user_prompt,
)
from agent_orchestrator.tools.knowledge import KnowledgeBase
from agent_orchestrator.tools.knowledge import format_results_for_llm as format_knowledge
from agent_orchestrator.tools.registry import ToolContext
from agent_orchestrator.tools.search import format_results_for_llm
from agent_orchestrator.tools.validation import FAILED, PASSED, WARNING, evaluate

from conftest import (
    PROFILE_ID,
    WELCOME_BRIEF,
    FakeEmbeddingProvider,
    generator_email_turn,
    text_turn,
)


@pytest.fixture
def context(events) -> ToolContext:
    return ToolContext(
        run_id="run-test",
        user_id="user-1",
        business_profile_id=PROFILE_ID,
        conversation_id="conv-1",
        message_id="msg-1",
        events=events,
    )


class TestFetchCanon:
    def test_active_items_for_profile_by_priority(self, make_deps):
        items = make_deps().canon.fetch(PROFILE_ID, "email")
        assert [i["id"] for i in items] == ["canon-welcome", "canon-compliance", "canon-voice"]

    def test_category_filter(self, make_deps):
        items = make_deps().canon.fetch(PROFILE_ID, "email", "compliance")
        assert [i["id"] for i in items] == ["canon-compliance"]

    def test_fetch_is_cached(self, make_deps, store):
        deps = make_deps()
        deps.canon.fetch(PROFILE_ID, "email")
        store.update_record("canon_items", "canon-welcome", {"name": "Renamed"})

        cached = deps.canon.fetch(PROFILE_ID, "email")
        assert cached[0]["name"] == "Welcome Sequence Framework"

        assert deps.canon.invalidate(PROFILE_ID) == 1
        assert deps.canon.fetch(PROFILE_ID, "email")[0]["name"] == "Renamed"

    def test_compliance_rules_flattened(self, make_deps):
        rules = make_deps().canon.compliance_rules(PROFILE_ID, "email")
        assert [r["type"] for r in rules] == ["required_phrase", "forbidden_phrase"]
        assert rules[0]["source"] == "Email Compliance"

    def test_dispatch_emits_progress_and_insight(self, make_deps, context, sink):
        result = make_deps().registry.dispatch(
            "fetch_canon", {"category": "all", "content_type": "email"}, context, "call_1"
        )
        assert result.succeeded is True
        assert "## Welcome Sequence Framework (framework)" in result.payload
        assert sink.types() == ["progress-note", "insight"]
        assert sink.events[1].payload["count"] == 3

    def test_format_empty(self):
        assert "No canon found" in format_canon_for_llm([])

    def test_free_text_rules(self, make_deps, store, context):
        store.update_record(
            "canon_items",
            "canon-compliance",
            {"content": {"rules": ["Always include an unsubscribe link"]}},
        )
        deps = make_deps()

        result = deps.registry.dispatch(
            "fetch_canon", {"category": "compliance", "content_type": "email"}, context, "call_1"
        )

        assert result.succeeded is True
        assert "- Rule: Always include an unsubscribe link" in result.payload
        assert deps.canon.compliance_rules(PROFILE_ID, "email") == []


class TestKnowledgeSearch:
    @pytest.fixture
    def seeded(self, store):
        store.seed(
            "knowledge_chunks",
            [
                {
                    "business_profile_id": PROFILE_ID,
                    "resource_type": "offer",
                    "title": "Spring Offer",
                    "content": "20% off the starter plan",
                    "embedding": [0.0, 1.0, 0.0],
                },
                {
                    "business_profile_id": PROFILE_ID,
                    "resource_type": "brand_guidelines",
                    "title": "Welcome Voice",
                    "content": "Always greet warmly",
                    "embedding": [1.0, 0.0, 0.0],
                },
                {
                    "business_profile_id": "bp-2",
                    "resource_type": "offer",
                    "title": "Other Offer",
                    "content": "Not ours",
                    "embedding": [0.0, 1.0, 0.0],
                },
            ],
        )
        return store

    def test_ranked_by_similarity_within_profile(self, seeded, cache):
        knowledge = KnowledgeBase(FakeEmbeddingProvider(), InMemorySimilaritySearch(seeded), cache)
        results = knowledge.search(PROFILE_ID, "current offer", top_k=5)
        assert [r["title"] for r in results] == ["Spring Offer", "Welcome Voice"]
        assert results[0]["similarity"] == 1.0
        assert "embedding" not in results[0]

    def test_dispatch(self, make_deps, seeded, context, sink):
        deps = make_deps()
        result = deps.registry.dispatch(
            "knowledge_search", {"query": "current offer", "top_k": 2}, context, "call_1"
        )
        assert result.succeeded is True
        assert result.payload.index("Spring Offer") < result.payload.index("Welcome Voice")
        assert "Other Offer" not in result.payload
        assert sink.types() == ["progress-note", "insight"]
        assert sink.events[1].payload["titles"] == ["Spring Offer", "Welcome Voice"]

    def test_resource_type_filter(self, make_deps, seeded, context):
        result = make_deps().registry.dispatch(
            "knowledge_search",
            {"query": "welcome", "resource_types": ["brand_guidelines"]},
            context,
            "call_1",
        )
        assert "Welcome Voice" in result.payload
        assert "Spring Offer" not in result.payload

    def test_query_embedding_cached(self, make_deps, seeded, context):
        deps = make_deps()
        for top_k in (2, 3):
            deps.registry.dispatch(
                "knowledge_search", {"query": "welcome", "top_k": top_k}, context, "call_1"
            )
        assert deps.embedding_provider.calls == ["welcome"]

    def test_format_empty(self):
        assert format_knowledge([]) == "No relevant knowledge found in business resources."

    def test_format_record_without_content(self):
        payload = format_knowledge(
            [{"title": "Blank Page", "resource_type": "offer", "similarity": 0.5, "content": None}]
        )
        assert "### 1. Blank Page (50.0% match)" in payload


class TestWebSearch:
    def test_dispatch_uses_cache(self, make_deps, web_search_provider, context, sink):
        deps = make_deps()
        args = {"query": "welcome email trends"}
        first = deps.registry.dispatch("web_search", args, context, "call_1")
        second = deps.registry.dispatch("web_search", args, context, "call_2")

        assert first.payload == second.payload
        assert "Welcome Emails That Convert" in first.payload
        assert "Published: 2026-01-10" in first.payload
        web_search_provider.search.assert_called_once_with("welcome email trends", "basic", 10)
        insight = next(e for e in sink.events if e.type.value == "insight")
        assert insight.payload["content"] == "Welcome emails have the highest open rates."

    def test_provider_error_absorbed(self, make_deps, web_search_provider, context):
        web_search_provider.search.side_effect = ProviderError("web search failed: timeout")
        result = make_deps().registry.dispatch(
            "web_search", {"query": "anything"}, context, "call_1"
        )
        assert result.succeeded is False
        assert result.error_tag == ErrorTag.TOOL_EXECUTION_ERROR
        assert "timeout" in result.error_detail

    def test_format_no_results(self):
        assert format_results_for_llm({"query": "x", "results": []}) == "No results found."


class TestContentExecution:
    def test_required_fields_enforced(self, make_deps, context):
        result = make_deps().registry.dispatch(
            "content_execution",
            {"content_type": "email", "brief": {"purpose": "Welcome"}},
            context,
            "call_1",
        )
        assert result.error_tag == ErrorTag.INVALID_TOOL_ARGUMENTS
        assert "target_audience" in result.error_detail

    def test_titles(self):
        assert artifact_title("email", ContentBrief(purpose="Welcome")) == "Email: Welcome"
        assert (
            artifact_title("ad", ContentBrief(platform="Facebook", objective="conversion"))
            == "Facebook Ad: conversion"
        )
        assert (
            artifact_title("landing-page", ContentBrief(product_service="Coaching"))
            == "Landing Page: Coaching"
        )
        assert artifact_title("script", ContentBrief(purpose="Intro")) == "Video Script: Intro"

    def test_user_prompt_lists_brief(self):
        args = ContentExecutionArgs(content_type="email", brief=WELCOME_BRIEF)
        prompt = build_user_prompt(args.content_type, args.brief)
        assert prompt.startswith("Create email content from this brief:")
        assert "Target Audience: New newsletter subscribers" in prompt

    def test_generates_and_stores_artifact(self, make_deps, context, sink):
        deps = make_deps(generator_turns=[generator_email_turn()])
        result = deps.registry.dispatch(
            "content_execution",
            {"content_type": "email", "brief": WELCOME_BRIEF},
            context,
            "call_1",
        )

        assert result.succeeded is True
        artifact = deps.store.get_record("artifacts", result.metadata["artifact_id"])
        assert artifact["conversation_id"] == "conv-1"
        assert artifact["message_id"] == "msg-1"
        assert artifact["content"].startswith("Subject: Welcome aboard!")
        assert artifact["metadata"]["output_tokens"] == 42
        assert artifact["metadata"]["model"] == "scripted-generator"
        assert sink.types()[-1] == "artifact-end"
        assert sink.events[-1].payload["status"] == "complete"

    def test_generator_prompt(self, make_deps, context):
        deps = make_deps(generator_turns=[generator_email_turn()])
        deps.registry.dispatch(
            "content_execution",
            {"content_type": "email", "brief": WELCOME_BRIEF},
            context,
            "call_1",
        )
        request = deps.generator_provider.requests[0]
        assert request["tools"] is None
        assert request["messages"][0]["role"] == "system"
        assert "email copywriter" in request["messages"][0]["content"]

    def test_transport_error_is_tool_failure(self, make_deps, context, sink):
        turn = text_turn("Subject: ")[:2] + [TransportError("generator down")]
        deps = make_deps(generator_turns=[turn])
        result = deps.registry.dispatch(
            "content_execution",
            {"content_type": "email", "brief": WELCOME_BRIEF},
            context,
            "call_1",
        )
        assert result.succeeded is False
        assert "generator down" in result.error_detail
        assert sink.events[-1].payload["status"] == "failed"


class TestValidateContent:
    RULES = [
        {"type": "required_phrase", "value": "unsubscribe", "severity": "error"},
        {"type": "forbidden_phrase", "value": "guaranteed", "severity": "warning"},
        {"type": "max_length", "value": 500},
    ]

    def test_evaluate_passed(self):
        status, findings = evaluate("Click to unsubscribe.", self.RULES)
        assert status == PASSED
        assert findings == []

    def test_evaluate_warning(self):
        status, findings = evaluate("Guaranteed results. Unsubscribe anytime.", self.RULES)
        assert status == WARNING
        assert findings[0].severity == "warning"

    def test_evaluate_failed(self):
        status, findings = evaluate("x" * 600, self.RULES)
        assert status == FAILED
        assert len(findings) == 2

    def test_pattern_and_min_length(self):
        rules = [
            {"type": "pattern", "value": r"^Subject:", "severity": "error"},
            {"type": "min_length", "value": 20, "severity": "warning"},
        ]
        assert evaluate("Subject: Hi", rules)[0] == WARNING
        assert evaluate("Hello there", rules)[0] == FAILED

    def test_validates_raw_content(self, make_deps, context):
        result = make_deps().registry.dispatch(
            "validate_content",
            {"content": "Hello! Unsubscribe below.", "content_type": "email"},
            context,
            "call_1",
        )
        assert result.succeeded is True
        assert result.metadata["validation_status"] == PASSED
        assert result.payload.startswith("Validation passed (2 rules checked)")

    def test_validates_artifact_and_records_status(self, make_deps, context, store):
        artifact = store.create_record(
            "artifacts",
            {"artifact_type": "email", "content": "Guaranteed wins!", "metadata": {}},
        )
        result = make_deps().registry.dispatch(
            "validate_content", {"artifact_id": artifact["id"]}, context, "call_1"
        )
        assert result.metadata["validation_status"] == FAILED
        updated = store.get_record("artifacts", artifact["id"])
        assert updated["metadata"]["validation_status"] == FAILED
        assert len(updated["metadata"]["validation_findings"]) == 2

    def test_missing_artifact(self, make_deps, context):
        result = make_deps().registry.dispatch(
            "validate_content", {"artifact_id": "nope"}, context, "call_1"
        )
        assert result.succeeded is False
        assert "not found" in result.error_detail

    def test_requires_target(self, make_deps, context):
        result = make_deps().registry.dispatch("validate_content", {}, context, "call_1")
        assert result.error_tag == ErrorTag.INVALID_TOOL_ARGUMENTS
