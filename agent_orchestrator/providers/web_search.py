"""
Tavily web search client.
"""

import logging
from typing import Optional

import requests

from ..errors import ProviderError
from ..models import WebSearchConfig

logger = logging.getLogger(__name__)


class WebSearchProvider:
    """
    Hosted web search over a shared HTTP session.

    Args:
        url: Tavily API base URL
        api_key: Tavily API key
        timeout: Request timeout in seconds
        session: Shared requests session
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_config(
        cls, config: WebSearchConfig, session: Optional[requests.Session] = None
    ) -> "WebSearchProvider":
        return cls(url=config.url, api_key=config.api_key, timeout=config.timeout, session=session)

    def search(self, query: str, depth: str = "basic", max_results: int = 10) -> dict:
        """
        Search the web.

        Returns:
            Dictionary with query, results (title, url, content, score,
            published_date) and an optional summary

        Raises:
            ProviderError: On HTTP or connection failure
        """
        if not self.api_key:
            raise ProviderError("web search is not configured (missing api key)")

        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": depth,
            "max_results": max_results,
            "include_answer": True,
        }
        try:
            response = self._session.post(
                f"{self.url}/search", json=payload, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Web search failed: {e}")
            raise ProviderError(f"web search failed: {e}") from e

        results = [
            {
                "title": r.get("title", ""),
                "url": r.get("url", ""),
                "content": r.get("content", ""),
                "score": r.get("score"),
                "published_date": r.get("published_date"),
            }
            for r in data.get("results", [])[:max_results]
        ]
        return {
            "query": query,
            "results": results,
            "summary": data.get("answer"),
            "total": len(results),
        }
