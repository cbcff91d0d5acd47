"""
Process-wide dependencies.

Every external client is built once at startup and shared by all runs:
one ``requests.Session`` for HTTP adapters, one OpenAI client per model
profile, one cache, one record store. Runs only hold references.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .cache import TieredCache
from .models import AppConfig
from .providers import (
    EmbeddingProvider,
    InMemoryRecordStore,
    InMemorySimilaritySearch,
    ModelProvider,
    RecordStore,
    SimilaritySearch,
    SupabaseRecordStore,
    SupabaseSimilaritySearch,
    WebSearchProvider,
)
from .repositories import ConversationRepository
from .tools import (
    CanonLibrary,
    ContentGenerator,
    ContentValidator,
    KnowledgeBase,
    ToolRegistry,
    build_tool_registry,
)
from .tracing import TracingClient

logger = logging.getLogger(__name__)


@dataclass
class Dependencies:
    """Shared services handed to every run."""

    config: AppConfig
    cache: TieredCache
    store: RecordStore
    repository: ConversationRepository
    provider: ModelProvider
    registry: ToolRegistry
    canon: CanonLibrary
    tracing: Optional[TracingClient] = None
    generator_provider: Optional[ModelProvider] = None
    embedding_provider: Optional[EmbeddingProvider] = None
    session: Optional[requests.Session] = None

    def summary(self) -> dict[str, str]:
        return {
            "record_store": type(self.store).__name__,
            "model": self.provider.model,
            "generator_model": self.generator_provider.model if self.generator_provider else "-",
            "tracing": "enabled" if self.tracing and self.tracing.enabled else "disabled",
            "tools": ", ".join(self.registry.names()),
        }

    def close(self) -> None:
        """Release network clients and flush tracing."""
        for provider in (self.provider, self.generator_provider):
            if provider is not None:
                provider.close()
        if self.session is not None:
            self.session.close()
        if self.tracing is not None:
            self.tracing.shutdown()


def _build_store(config: AppConfig, session: requests.Session) -> tuple[RecordStore, SimilaritySearch]:
    store_config = config.record_store
    if store_config.backend == "supabase":
        logger.info(f"Using Supabase record store at {store_config.url}")
        return (
            SupabaseRecordStore.from_config(store_config, session=session),
            SupabaseSimilaritySearch.from_config(store_config, session=session),
        )
    logger.info("Using in-memory record store")
    store = InMemoryRecordStore()
    return store, InMemorySimilaritySearch(store)


def build_dependencies(
    config: AppConfig,
    store: Optional[RecordStore] = None,
    similarity: Optional[SimilaritySearch] = None,
    provider: Optional[ModelProvider] = None,
    generator_provider: Optional[ModelProvider] = None,
    embedding_provider: Optional[EmbeddingProvider] = None,
    web_search_provider: Optional[WebSearchProvider] = None,
    tracing: Optional[TracingClient] = None,
) -> Dependencies:
    """
    Wire up all services from configuration.

    Any argument given replaces the component that would be built from
    config, which lets tests inject fakes.
    """
    session = requests.Session()
    cache = TieredCache(config.cache)

    if store is None:
        store, built_similarity = _build_store(config, session)
        similarity = similarity or built_similarity
    elif similarity is None:
        similarity = InMemorySimilaritySearch(store)

    provider = provider or ModelProvider.from_config(config.orchestrator)
    generator_provider = generator_provider or ModelProvider.from_config(config.generator)
    embedding_provider = embedding_provider or EmbeddingProvider.from_config(config.embedding)
    web_search_provider = web_search_provider or WebSearchProvider.from_config(
        config.web_search, session=session
    )
    if tracing is None:
        tracing = TracingClient.from_config(config.langfuse)

    repository = ConversationRepository(
        store, cache, history_limit=config.record_store.history_limit
    )
    canon = CanonLibrary(store, cache)
    registry = build_tool_registry(
        canon_library=canon,
        knowledge_base=KnowledgeBase(embedding_provider, similarity, cache),
        web_search_provider=web_search_provider,
        cache=cache,
        generator=ContentGenerator(generator_provider, store),
        validator=ContentValidator(store, canon),
    )

    return Dependencies(
        config=config,
        cache=cache,
        store=store,
        repository=repository,
        provider=provider,
        registry=registry,
        canon=canon,
        tracing=tracing,
        generator_provider=generator_provider,
        embedding_provider=embedding_provider,
        session=session,
    )
