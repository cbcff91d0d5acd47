"""
Conversation and message persistence on top of the record store.
"""

import logging
from typing import Optional

from .cache import DataClass, TieredCache
from .errors import AgentError, PersistenceError
from .providers.record_store import RecordStore

logger = logging.getLogger(__name__)

CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "messages"

# Conversation titles are derived from the first user message.
TITLE_MAX_LENGTH = 50
DEFAULT_TITLE = "New Conversation"


class ConversationNotFound(AgentError):
    """No conversation with the requested id."""


class ConversationAccessDenied(AgentError):
    """The conversation belongs to another user."""


def title_from_message(message: str) -> str:
    text = " ".join(message.split())
    if not text:
        return DEFAULT_TITLE
    if len(text) <= TITLE_MAX_LENGTH:
        return text
    return text[:TITLE_MAX_LENGTH].rstrip() + "..."


class ConversationRepository:
    """
    Conversations, their messages and the cached history window.

    Args:
        store: Record store
        cache: Tiered cache; history windows live under the session class
        history_limit: Number of most recent messages loaded as history
    """

    def __init__(self, store: RecordStore, cache: TieredCache, history_limit: int = 20):
        self._store = store
        self._cache = cache
        self.history_limit = history_limit

    def get_or_create(
        self,
        conversation_id: Optional[str],
        user_id: str,
        business_profile_id: str,
        first_message: str = "",
    ) -> dict:
        """
        Return the conversation, creating it when no id is given.

        Raises:
            ConversationNotFound: If an id is given but does not exist
            ConversationAccessDenied: If it belongs to another user
            PersistenceError: If the record store fails
        """
        if conversation_id:
            return self.get(conversation_id, user_id)

        conversation = self._store.create_record(
            CONVERSATIONS_TABLE,
            {
                "user_id": user_id,
                "business_profile_id": business_profile_id,
                "title": title_from_message(first_message),
                "status": "active",
                "message_count": 0,
            },
        )
        logger.info(f"Created conversation {conversation['id']} for user {user_id}")
        return conversation

    def get(self, conversation_id: str, user_id: Optional[str] = None) -> dict:
        conversation = self._store.get_record(CONVERSATIONS_TABLE, conversation_id)
        if conversation is None:
            raise ConversationNotFound(f"conversation {conversation_id} not found")
        if user_id is not None and conversation.get("user_id") != user_id:
            raise ConversationAccessDenied(
                f"conversation {conversation_id} does not belong to user {user_id}"
            )
        return conversation

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: Optional[dict] = None,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
    ) -> dict:
        """
        Persist one message and invalidate the cached history window.

        Raises:
            PersistenceError: If the record store rejects the write
        """
        conversation = self._store.get_record(CONVERSATIONS_TABLE, conversation_id)
        if conversation is None:
            raise PersistenceError(f"conversation {conversation_id} not found")
        order = int(conversation.get("message_count") or 0) + 1

        message = self._store.create_record(
            MESSAGES_TABLE,
            {
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "message_order": order,
                "metadata": metadata or {},
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
            },
        )
        self._store.update_record(
            CONVERSATIONS_TABLE,
            conversation_id,
            {"message_count": order, "last_message_at": message.get("created_at")},
        )
        self._cache.invalidate_class(DataClass.SESSION, f"history:{conversation_id}")
        return message

    def load_history(self, conversation_id: str) -> list[dict]:
        """The most recent messages in chronological order, cached per conversation."""

        def fetch() -> list[dict]:
            rows = self._store.query_records(
                MESSAGES_TABLE,
                {"conversation_id": conversation_id},
                order_by="-message_order",
                limit=self.history_limit,
            )
            return [
                {"id": r["id"], "role": r["role"], "content": r["content"]}
                for r in reversed(rows)
            ]

        return self._cache.get_or_compute(
            DataClass.SESSION, f"history:{conversation_id}", fetch
        )

    def list_messages(self, conversation_id: str) -> list[dict]:
        return self._store.query_records(
            MESSAGES_TABLE, {"conversation_id": conversation_id}, order_by="message_order"
        )

    def get_with_messages(self, conversation_id: str, user_id: Optional[str] = None) -> dict:
        conversation = self.get(conversation_id, user_id)
        return {"conversation": conversation, "messages": self.list_messages(conversation_id)}
