"""Text embeddings via the Voyage AI REST API.

``embed`` never raises: any failure (no key, HTTP error, malformed body)
is logged and returns ``None`` so retrieval can drop to keyword search.
"""

from __future__ import annotations

import logging
import math

from careconnect.config import EMBEDDING_MODEL, VOYAGE_API_KEY, VOYAGE_BASE_URL
from careconnect.services.http import ApiClient

logger = logging.getLogger(__name__)

MAX_EMBED_CHARS = 2048
EMBED_TIMEOUT_SECONDS = 10.0


class EmbeddingClient(ApiClient):
    service_name = "voyage"

    def __init__(self, api_key: str | None = None, model: str | None = None, **kwargs):
        self._api_key = api_key if api_key is not None else VOYAGE_API_KEY
        self._model = model or EMBEDDING_MODEL
        kwargs.setdefault("timeout", EMBED_TIMEOUT_SECONDS)
        kwargs.setdefault("max_retries", 2)
        super().__init__(
            VOYAGE_BASE_URL,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def embed(self, text: str) -> list[float] | None:
        if not self.configured or not text or not text.strip():
            return None
        try:
            body = await self._request(
                "POST",
                "/embeddings",
                operation="embeddings",
                json_body={"input": [text[:MAX_EMBED_CHARS]], "model": self._model},
            )
            vector = body["data"][0]["embedding"]
        except Exception as exc:
            logger.warning("Embedding request failed: %s", exc)
            return None
        if not isinstance(vector, list) or not vector:
            return None
        return [float(v) for v in vector]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to ``[0, 1]``; mismatched or zero vectors give 0."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return max(0.0, min(1.0, dot / norm))
