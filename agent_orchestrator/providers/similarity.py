"""
Vector similarity search over a business profile's knowledge chunks.
"""

import logging
import math
from typing import Optional, Protocol

import requests

from ..errors import ProviderError
from ..models import RecordStoreConfig
from .record_store import RecordStore

logger = logging.getLogger(__name__)

KNOWLEDGE_TABLE = "knowledge_chunks"


class SimilaritySearch(Protocol):
    def search(
        self,
        profile_scope: str,
        query_vector: list[float],
        filters: Optional[dict] = None,
        top_k: int = 5,
    ) -> list[dict]: ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemorySimilaritySearch:
    """Ranks stored chunks by cosine similarity to the query vector."""

    def __init__(self, record_store: RecordStore, table: str = KNOWLEDGE_TABLE):
        self._store = record_store
        self._table = table

    def search(
        self,
        profile_scope: str,
        query_vector: list[float],
        filters: Optional[dict] = None,
        top_k: int = 5,
    ) -> list[dict]:
        query = {"business_profile_id": profile_scope, **(filters or {})}
        scored = []
        for chunk in self._store.query_records(self._table, query):
            embedding = chunk.pop("embedding", None) or []
            chunk["similarity"] = round(cosine_similarity(query_vector, embedding), 6)
            scored.append(chunk)
        scored.sort(key=lambda c: c["similarity"], reverse=True)
        return scored[:top_k]


class SupabaseSimilaritySearch:
    """Calls a Postgres function (pgvector) through the PostgREST RPC endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str,
        match_function: str = "match_knowledge",
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = f"{url.rstrip('/')}/rest/v1/rpc/{match_function}"
        self.timeout = timeout
        self._session = session or requests.Session()
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_config(
        cls, config: RecordStoreConfig, session: Optional[requests.Session] = None
    ) -> "SupabaseSimilaritySearch":
        return cls(
            url=config.url,
            api_key=config.api_key,
            match_function=config.match_function,
            timeout=config.timeout,
            session=session,
        )

    def search(
        self,
        profile_scope: str,
        query_vector: list[float],
        filters: Optional[dict] = None,
        top_k: int = 5,
    ) -> list[dict]:
        payload = {
            "query_embedding": query_vector,
            "match_count": top_k,
            "profile_id": profile_scope,
        }
        if filters and filters.get("resource_type"):
            payload["resource_types"] = list(filters["resource_type"])
        try:
            response = self._session.post(
                self.endpoint, json=payload, headers=self._headers, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Similarity search failed: {e}")
            raise ProviderError(f"similarity search failed: {e}") from e
        return response.json()
