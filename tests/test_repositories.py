"""Tests for conversation persistence."""

import pytest

from agent_orchestrator.cache import TieredCache
from agent_orchestrator.errors import PersistenceError
from agent_orchestrator.models import CacheConfig
from agent_orchestrator.providers import InMemoryRecordStore
from agent_orchestrator.repositories import (
    DEFAULT_TITLE,
    ConversationAccessDenied,
    ConversationNotFound,
    ConversationRepository,
    title_from_message,
)


@pytest.fixture
def repository() -> ConversationRepository:
    return ConversationRepository(InMemoryRecordStore(), TieredCache(CacheConfig()), history_limit=3)


@pytest.fixture
def conversation(repository) -> dict:
    return repository.get_or_create(None, "user-1", "bp-1", first_message="Write a welcome email")


class TestTitles:
    def test_short_message(self):
        assert title_from_message("  Write a   welcome email ") == "Write a welcome email"

    def test_long_message_truncated(self):
        title = title_from_message("word " * 30)
        assert title.endswith("...")
        assert len(title) <= 53

    def test_empty_message(self):
        assert title_from_message("   ") == DEFAULT_TITLE


class TestConversations:
    def test_create(self, conversation):
        assert conversation["user_id"] == "user-1"
        assert conversation["business_profile_id"] == "bp-1"
        assert conversation["title"] == "Write a welcome email"
        assert conversation["message_count"] == 0

    def test_get_existing(self, repository, conversation):
        assert repository.get_or_create(conversation["id"], "user-1", "bp-1")["id"] == (
            conversation["id"]
        )

    def test_not_found(self, repository):
        with pytest.raises(ConversationNotFound):
            repository.get_or_create("missing", "user-1", "bp-1")

    def test_other_users_conversation(self, repository, conversation):
        with pytest.raises(ConversationAccessDenied):
            repository.get(conversation["id"], "user-2")


class TestMessages:
    def test_message_order_and_count(self, repository, conversation):
        first = repository.append_message(conversation["id"], "user", "Hi")
        second = repository.append_message(
            conversation["id"], "assistant", "Hello", metadata={"run_id": "run-1"}, output_tokens=4
        )

        assert (first["message_order"], second["message_order"]) == (1, 2)
        assert second["metadata"] == {"run_id": "run-1"}
        assert repository.get(conversation["id"])["message_count"] == 2

    def test_append_to_missing_conversation(self, repository):
        with pytest.raises(PersistenceError):
            repository.append_message("missing", "user", "Hi")

    def test_history_window(self, repository, conversation):
        for i in range(5):
            repository.append_message(conversation["id"], "user", f"message {i}")

        history = repository.load_history(conversation["id"])

        assert [m["content"] for m in history] == ["message 2", "message 3", "message 4"]
        assert set(history[0]) == {"id", "role", "content"}

    def test_append_invalidates_history(self, repository, conversation):
        repository.append_message(conversation["id"], "user", "first")
        assert len(repository.load_history(conversation["id"])) == 1

        repository.append_message(conversation["id"], "assistant", "second")
        assert [m["content"] for m in repository.load_history(conversation["id"])] == [
            "first",
            "second",
        ]

    def test_get_with_messages(self, repository, conversation):
        repository.append_message(conversation["id"], "user", "Hi")
        repository.append_message(conversation["id"], "assistant", "Hello")

        result = repository.get_with_messages(conversation["id"], "user-1")

        assert result["conversation"]["id"] == conversation["id"]
        assert [m["role"] for m in result["messages"]] == ["user", "assistant"]
