"""
EMBEDDING MODULE - Turn text into vectors

    "orders table with id, customer_id, total" -> [0.013, -0.201, ..., 0.087]

Similar texts get similar vectors, which is what schema retrieval relies on.
All vectors from one model share a dimension (1536 for text-embedding-3-small).
"""

import logging
from typing import Any, Dict, List

from querylens.ai_feature.providers import ProviderClient
from querylens.core.errors import ProviderError

logger = logging.getLogger(__name__)


class EmbeddingClient:
    def __init__(self, provider: ProviderClient, model: str):
        self.provider = provider
        self.model = model

    async def embed(self, text: str) -> List[float]:
        """Embedding for a single text."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embeddings for several texts in one request, in input order.

        Raises:
            ProviderError: empty or malformed response (never a zero vector)
        """
        if not texts:
            return []

        response = await self.provider.post_json(
            "/embeddings", {"model": self.model, "input": texts}
        )
        return self._parse_vectors(response, expected=len(texts))

    def _parse_vectors(self, response: Dict[str, Any], expected: int) -> List[List[float]]:
        data = response.get("data") or []
        if not data:
            raise ProviderError("Failed to generate embedding: Empty response")

        # The provider tags each vector with the position of its input
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        vectors = [item.get("embedding") or [] for item in ordered]

        if len(vectors) != expected or any(not vector for vector in vectors):
            raise ProviderError(
                f"Failed to generate embedding: expected {expected} vectors, got "
                f"{sum(1 for v in vectors if v)}"
            )

        logger.debug(f"Embedded {expected} texts with {self.model}")
        return [[float(x) for x in vector] for vector in vectors]
