"""
Text embedding provider backed by the OpenAI embeddings API.
"""

import logging
from typing import Optional

import openai
from openai import OpenAI

from ..errors import ProviderError
from ..models import EmbeddingConfig

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """Converts text to a vector."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout: int = 30,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self._client = client or OpenAI(
            base_url=base_url,
            api_key=api_key or "not-needed",
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "EmbeddingProvider":
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            model=config.model,
            timeout=config.timeout,
        )

    def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            ProviderError: If the embeddings API fails or returns nothing
        """
        try:
            response = self._client.embeddings.create(model=self.model, input=text)
        except openai.OpenAIError as e:
            logger.error(f"Embedding request failed: {e}")
            raise ProviderError(f"embedding failed: {e}") from e
        if not response.data:
            raise ProviderError("embedding response contained no vectors")
        return list(response.data[0].embedding)
