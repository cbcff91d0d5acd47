"""
Knowledge Search Tool

Semantic search over a business profile's resources (brand guidelines,
offers, testimonials, case studies, handbooks). Query embeddings and search
results are both cached.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from ..cache import DataClass, TieredCache, hash_key
from ..providers.embedding import EmbeddingProvider
from ..providers.similarity import SimilaritySearch
from .registry import ToolContext, ToolKind, ToolRegistry

logger = logging.getLogger(__name__)

RESOURCE_LABELS = {
    "brand_guidelines": "Brand Guidelines",
    "offer": "Offers",
    "testimonial": "Testimonials",
    "case_study": "Case Studies",
    "handbook": "Copywriting Handbooks",
    "avatar": "Customer Avatars",
    "research_report": "Research Reports",
}


class KnowledgeSearchArgs(BaseModel):
    query: str = Field(
        ..., min_length=1, description="Search query for finding relevant business resources"
    )
    top_k: int = Field(5, ge=1, le=20, description="Number of results to return")
    resource_types: Optional[list[str]] = Field(
        None,
        description=(
            "Filter by resource types: brand_guidelines, offer, testimonial, "
            "case_study, handbook"
        ),
    )


class KnowledgeBase:
    """Embeds queries and ranks a profile's chunks by similarity."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        similarity: SimilaritySearch,
        cache: TieredCache,
    ):
        self._embedder = embedder
        self._similarity = similarity
        self._cache = cache

    def embed(self, text: str) -> list[float]:
        return self._cache.get_or_compute(
            DataClass.EMBEDDING, hash_key(text), lambda: self._embedder.embed(text)
        )

    def search(
        self,
        business_profile_id: str,
        query: str,
        top_k: int = 5,
        resource_types: Optional[list[str]] = None,
    ) -> list[dict]:
        types = sorted(resource_types or [])
        key = f"{business_profile_id}:{hash_key(query)}:{top_k}:{','.join(types)}"

        def run() -> list[dict]:
            vector = self.embed(query)
            filters = {"resource_type": types} if types else None
            return self._similarity.search(business_profile_id, vector, filters, top_k)

        return self._cache.get_or_compute(DataClass.KNOWLEDGE, key, run)


def format_results_for_llm(results: list[dict]) -> str:
    """Group results by resource type; longer excerpts for closer matches."""
    if not results:
        return "No relevant knowledge found in business resources."

    grouped: dict[str, list[dict]] = {}
    for result in results:
        grouped.setdefault(result.get("resource_type") or "business_resource", []).append(result)

    sections = []
    for resource_type, items in grouped.items():
        lines = [f"## {RESOURCE_LABELS.get(resource_type, resource_type)}"]
        for i, item in enumerate(items, 1):
            similarity = float(item.get("similarity") or 0.0)
            lines.append(f"### {i}. {item.get('title', 'Untitled')} ({similarity * 100:.1f}% match)")
            max_length = 800 if similarity > 0.7 else 500
            content = item.get("content") or ""
            if len(content) > max_length:
                content = content[:max_length] + "..."
            lines.append(content)
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def register(registry: ToolRegistry, knowledge: KnowledgeBase) -> None:
    """Register knowledge_search with the registry."""

    def handle(args: KnowledgeSearchArgs, context: ToolContext) -> dict:
        context.progress("Searching business knowledge...")
        results = knowledge.search(
            context.business_profile_id, args.query, args.top_k, args.resource_types
        )
        titles = [r.get("title", "") for r in results[:3]]
        context.insight(
            "knowledge_summary",
            f"Found {len(results)} relevant resources",
            count=len(results),
            titles=titles,
        )
        return {"query": args.query, "results": results}

    registry.register(
        name="knowledge_search",
        description=(
            "Search user business resources (brand guidelines, offers, testimonials, "
            "case studies, copywriting handbooks) using semantic similarity. Use this "
            "AFTER loading canon to find specific brand/product information."
        ),
        arguments=KnowledgeSearchArgs,
        handler=handle,
        kind=ToolKind.READ_AUGMENTATION,
        formatter=lambda output: format_results_for_llm(output["results"]),
    )
