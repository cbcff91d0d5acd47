"""
Adapters for external collaborators: the generative model, embeddings,
web search, the record store and similarity search.
"""

from .embedding import EmbeddingProvider
from .model import ModelProvider, increments_from_chunks, map_finish_reason
from .record_store import InMemoryRecordStore, RecordStore, SupabaseRecordStore
from .similarity import (
    InMemorySimilaritySearch,
    SimilaritySearch,
    SupabaseSimilaritySearch,
    cosine_similarity,
)
from .web_search import WebSearchProvider

__all__ = [
    "EmbeddingProvider",
    "ModelProvider",
    "increments_from_chunks",
    "map_finish_reason",
    "RecordStore",
    "InMemoryRecordStore",
    "SupabaseRecordStore",
    "SimilaritySearch",
    "InMemorySimilaritySearch",
    "SupabaseSimilaritySearch",
    "cosine_similarity",
    "WebSearchProvider",
]
