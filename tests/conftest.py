"""
Pytest configuration and fixtures for agent orchestrator tests.

Nothing here touches the network: the model providers replay scripted
increment lists, the record store lives in memory and tracing runs without
credentials (disabled).
"""

import copy
import json
from typing import Callable, Optional
from unittest.mock import MagicMock

import pytest

from agent_orchestrator.cache import TieredCache
from agent_orchestrator.dependencies import build_dependencies
from agent_orchestrator.models import (
    AgentRunState,
    AppConfig,
    CacheConfig,
    Conversation,
    StopReason,
)
from agent_orchestrator.orchestration.events import EventMultiplexer, ListSink
from agent_orchestrator.orchestration.increments import (
    ContentDelta,
    SegmentKind,
    SegmentStart,
    SegmentStop,
    TurnStop,
)
from agent_orchestrator.providers import InMemoryRecordStore, WebSearchProvider
from agent_orchestrator.tracing import TracingClient

PROFILE_ID = "bp-1"
USER_ID = "user-1"

WELCOME_BRIEF = {
    "purpose": "Welcome new subscribers",
    "target_audience": "New newsletter subscribers",
    "key_message": "Thanks for joining, here is what to expect",
    "cta": "Browse the starter guide",
    "tone": "Warm",
}

CANON_ITEMS = [
    {
        "id": "canon-welcome",
        "business_profile_id": PROFILE_ID,
        "name": "Welcome Sequence Framework",
        "category": "framework",
        "content_type": "email",
        "description": "Three-part welcome structure",
        "instructions": "Open with gratitude, set expectations, give one next step.",
        "content": {"steps": ["Thank", "Expect", "Act"]},
        "priority": 10,
        "is_active": True,
    },
    {
        "id": "canon-compliance",
        "business_profile_id": PROFILE_ID,
        "name": "Email Compliance",
        "category": "compliance",
        "content_type": "email",
        "content": {
            "rules": [
                {"type": "required_phrase", "value": "unsubscribe", "severity": "error"},
                {"type": "forbidden_phrase", "value": "guaranteed", "severity": "warning"},
            ]
        },
        "priority": 5,
        "is_active": True,
    },
    {
        "id": "canon-voice",
        "business_profile_id": PROFILE_ID,
        "name": "Brand Voice",
        "category": "template",
        "content_type": "general",
        "content": {"voice": "Friendly and direct"},
        "priority": 1,
        "is_active": True,
    },
    {
        "id": "canon-retired",
        "business_profile_id": PROFILE_ID,
        "name": "Retired Template",
        "category": "template",
        "content_type": "email",
        "content": {},
        "priority": 99,
        "is_active": False,
    },
    {
        "id": "canon-other-profile",
        "business_profile_id": "bp-2",
        "name": "Other Profile Framework",
        "category": "framework",
        "content_type": "email",
        "content": {},
        "priority": 50,
        "is_active": True,
    },
]


def text_turn(
    *fragments: str,
    stop_reason: StopReason = StopReason.NORMAL,
    input_tokens: int = 10,
    output_tokens: int = 5,
) -> list:
    """Increments for a text-only turn."""
    increments = [SegmentStart(0, SegmentKind.TEXT)]
    increments += [ContentDelta(0, fragment) for fragment in fragments]
    increments += [SegmentStop(0), TurnStop(stop_reason, input_tokens, output_tokens)]
    return increments


def tool_turn(
    *calls: tuple,
    text: Optional[str] = None,
    stop_reason: StopReason = StopReason.TOOL_REQUESTED,
    input_tokens: int = 20,
    output_tokens: int = 8,
) -> list:
    """
    Increments for a turn that requests tools.

    Each call is ``(call_id, name, arguments)``; arguments given as a dict are
    JSON encoded and split across two fragments.
    """
    increments: list = []
    index = 0
    if text:
        increments += [
            SegmentStart(0, SegmentKind.TEXT),
            ContentDelta(0, text),
            SegmentStop(0),
        ]
        index = 1
    for call_id, name, arguments in calls:
        raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
        middle = len(raw) // 2
        increments += [
            SegmentStart(index, SegmentKind.TOOL, tool_id=call_id, tool_name=name),
            ContentDelta(index, raw[:middle]),
            ContentDelta(index, raw[middle:]),
            SegmentStop(index),
        ]
        index += 1
    increments.append(TurnStop(stop_reason, input_tokens, output_tokens))
    return increments


class ScriptedModelProvider:
    """Replays one scripted increment list per requested turn."""

    def __init__(self, turns: Optional[list] = None, model: str = "scripted-model"):
        self.turns = list(turns or [])
        self.model = model
        self.requests: list[dict] = []
        self.closed = False

    def stream_turn(self, messages: list[dict], tools: Optional[list[dict]] = None):
        self.requests.append({"messages": copy.deepcopy(messages), "tools": tools})
        if not self.turns:
            raise AssertionError("model asked for more turns than were scripted")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        for increment in turn:
            if isinstance(increment, Exception):
                raise increment
            if callable(increment):
                increment()
                continue
            yield increment

    def close(self) -> None:
        self.closed = True


class FakeEmbeddingProvider:
    """Deterministic embeddings keyed on a few marketing words."""

    VOCABULARY = ("welcome", "offer", "testimonial")

    def __init__(self):
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        lowered = text.lower()
        vector = [1.0 if word in lowered else 0.0 for word in self.VOCABULARY]
        return vector if any(vector) else [0.1, 0.1, 0.1]


def welcome_email_turns() -> list:
    """Orchestrator turns for the canon -> generation -> answer run."""
    return [
        tool_turn(("call_1", "fetch_canon", {"category": "all", "content_type": "email"})),
        tool_turn(
            (
                "call_2",
                "content_execution",
                {"content_type": "email", "brief": WELCOME_BRIEF},
            )
        ),
        text_turn("Here is your welcome email. ", "Want a follow-up too?"),
    ]


def generator_email_turn() -> list:
    return text_turn(
        "Subject: Welcome aboard!\n\n",
        "Thanks for joining us. ",
        "Start with the guide. Reply or unsubscribe any time.",
        output_tokens=42,
    )


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def store() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    store.seed("canon_items", CANON_ITEMS)
    return store


@pytest.fixture
def cache() -> TieredCache:
    return TieredCache(CacheConfig())


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def events(sink) -> EventMultiplexer:
    return EventMultiplexer(sink, label="run-test")


@pytest.fixture
def web_search_provider() -> MagicMock:
    provider = MagicMock(spec=WebSearchProvider)
    provider.search.return_value = {
        "query": "welcome email trends",
        "results": [
            {
                "title": "Welcome Emails That Convert",
                "url": "https://example.com/welcome",
                "content": "Welcome emails see high open rates.",
                "score": 0.9,
                "published_date": "2026-01-10",
            }
        ],
        "summary": "Welcome emails have the highest open rates.",
        "total": 1,
    }
    return provider


@pytest.fixture
def make_deps(app_config, store, web_search_provider) -> Callable:
    """Factory building dependencies around scripted providers."""

    def factory(orchestrator_turns=None, generator_turns=None, record_store=None):
        return build_dependencies(
            app_config,
            store=record_store or store,
            provider=ScriptedModelProvider(orchestrator_turns),
            generator_provider=ScriptedModelProvider(generator_turns, model="scripted-generator"),
            embedding_provider=FakeEmbeddingProvider(),
            web_search_provider=web_search_provider,
            tracing=TracingClient(),
        )

    return factory


@pytest.fixture
def make_state() -> Callable:
    """Factory for a fresh run state around a persisted conversation."""

    def factory(deps, message: str = "Write a welcome email", run_id: str = "run-test"):
        record = deps.repository.get_or_create(None, USER_ID, PROFILE_ID, first_message=message)
        user_message = deps.repository.append_message(record["id"], "user", message)
        conversation = Conversation()
        conversation.append_user(message)
        return AgentRunState(
            run_id=run_id,
            conversation_id=record["id"],
            user_id=USER_ID,
            business_profile_id=PROFILE_ID,
            conversation=conversation,
            user_message_id=user_message["id"],
        )

    return factory
