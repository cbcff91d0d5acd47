"""
Web Search Tool

Real-time web search via Tavily, cached under the ``web-search`` class.
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field

from ..cache import DataClass, TieredCache, hash_key
from ..providers.web_search import WebSearchProvider
from .registry import ToolContext, ToolKind, ToolRegistry

logger = logging.getLogger(__name__)


class WebSearchArgs(BaseModel):
    query: str = Field(..., min_length=1, description="Web search query")
    search_depth: Literal["basic", "advanced"] = Field(
        "basic",
        description="basic = fast, fewer sources; advanced = comprehensive",
    )
    max_results: int = Field(10, ge=1, le=20, description="Maximum number of results")


def search(
    provider: WebSearchProvider,
    cache: TieredCache,
    query: str,
    depth: str = "basic",
    max_results: int = 10,
) -> dict:
    """
    Search the web through the cache.

    Returns:
        Dictionary with query, results, summary and total
    """
    key = f"{hash_key(query)}:{depth}:{max_results}"
    return cache.get_or_compute(
        DataClass.WEB_SEARCH, key, lambda: provider.search(query, depth, max_results)
    )


def format_results_for_llm(search_results: dict) -> str:
    """
    Format search results into a string suitable for LLM consumption.

    Args:
        search_results: Results from search()

    Returns:
        Formatted string of search results
    """
    if not search_results.get("results"):
        return "No results found."

    formatted = f"Search results for '{search_results['query']}':\n\n"
    if search_results.get("summary"):
        formatted += f"Summary: {search_results['summary']}\n\n"
    for i, result in enumerate(search_results["results"], 1):
        formatted += f"{i}. {result['title']}\n"
        formatted += f"   URL: {result['url']}\n"
        if result.get("published_date"):
            formatted += f"   Published: {result['published_date']}\n"
        if result.get("content"):
            formatted += f"   {result['content'][:300]}...\n"
        formatted += "\n"

    return formatted


def register(registry: ToolRegistry, provider: WebSearchProvider, cache: TieredCache) -> None:
    """Register web_search with the registry."""

    def handle(args: WebSearchArgs, context: ToolContext) -> dict:
        context.progress(f"Searching the web for '{args.query}'...")
        results = search(provider, cache, args.query, args.search_depth, args.max_results)
        context.insight(
            "research_summary",
            results.get("summary") or f"Found {results.get('total', 0)} web sources",
            count=results.get("total", 0),
            sources=[r["url"] for r in results.get("results", [])[:3]],
        )
        return results

    registry.register(
        name="web_search",
        description=(
            "Search the web for real-time information, trends, competitor research, or "
            "industry insights. Use this when the user asks for current data OR "
            "canon/knowledge suggest external research."
        ),
        arguments=WebSearchArgs,
        handler=handle,
        kind=ToolKind.READ_AUGMENTATION,
        formatter=format_results_for_llm,
    )
