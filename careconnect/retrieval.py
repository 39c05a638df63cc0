"""Two-tier retrieval of a grounding snippet from the knowledge corpus.

Tier 1 embeds the query and every corpus section and keeps the best
section if its cosine similarity clears :data:`SIMILARITY_THRESHOLD`.
Tier 2, used whenever tier 1 cannot produce an answer, is a
deterministic keyword scorer that needs no network at all.

Section embeddings are memoised in the TTL cache by a digest of the
section text, so the decision and response phases of a turn (and
subsequent turns) do not re-embed an unchanged corpus.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any

from careconnect.services.cache import TTLCache
from careconnect.services.embeddings import MAX_EMBED_CHARS, EmbeddingClient, cosine_similarity

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7
SNIPPET_MAX_CHARS = 800
SECTION_EMBEDDING_TTL_SECONDS = 3600

PRICE_TERMS = ("가격", "price", "비용", "cost", "ราคา")
PRICE_BONUS = 10
ENTITY_BONUS = 8

_PRICE_FIELD = re.compile(r'"price_krw"\s*:\s*"?(\d+)"?')
_PARENTHESIZED = re.compile(r"\s*\([^)]*\)")


def section_text(content: Any) -> str:
    """Flatten a corpus section to text (structured records become JSON)."""
    if isinstance(content, str):
        return content
    return json.dumps(content if content is not None else [], ensure_ascii=False)


def summarize(text: str, max_chars: int = SNIPPET_MAX_CHARS) -> str:
    """Render prices readably and cap the snippet at *max_chars* plus ``...``."""
    text = _PRICE_FIELD.sub(lambda m: f'"price_krw": "{int(m.group(1)):,}원"', text)
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _entity_keywords(content: Any) -> set[str]:
    """Words from the section's own ``name`` fields, without parenthesised parts."""
    records: list[Any]
    if isinstance(content, list):
        records = content
    elif isinstance(content, dict):
        records = [content, *[v for v in content.values() if isinstance(v, dict)]]
        for value in content.values():
            if isinstance(value, list):
                records.extend(value)
    else:
        return set()

    keywords: set[str] = set()
    for record in records:
        if isinstance(record, dict) and isinstance(record.get("name"), str):
            name = _PARENTHESIZED.sub("", record["name"]).strip().lower()
            keywords.update(word for word in name.split() if len(word) > 1)
    return keywords


def keyword_score(query: str, content: Any) -> int:
    q = query.lower()
    text = section_text(content).lower()
    score = sum(text.count(token) for token in set(q.split()) if token)
    if "price_krw" in text and any(term in q for term in PRICE_TERMS):
        score += PRICE_BONUS
    score += ENTITY_BONUS * sum(1 for keyword in _entity_keywords(content) if keyword in q)
    return score


def keyword_search(query: str, corpus: dict[str, Any]) -> str | None:
    """Best section by literal token overlap, or ``None`` if nothing matches."""
    if not query or not query.strip():
        return None
    best_name, best_score = None, 0
    for name, content in corpus.items():
        score = keyword_score(query, content)
        if score > best_score:
            best_name, best_score = name, score
    if best_name is None:
        return None
    logger.debug("Keyword retrieval picked %s (score=%d)", best_name, best_score)
    return summarize(section_text(corpus[best_name]))


class KnowledgeRetriever:
    def __init__(self, embedder: EmbeddingClient | None, cache: TTLCache) -> None:
        self._embedder = embedder
        self._cache = cache

    async def _section_vector(self, text: str) -> list[float] | None:
        capped = text[:MAX_EMBED_CHARS]
        key = "embedding:" + hashlib.sha1(capped.encode("utf-8")).hexdigest()
        vector = self._cache.get(key)
        if vector is None:
            vector = await self._embedder.embed(capped)
            if vector is not None:
                self._cache.set(key, vector, SECTION_EMBEDDING_TTL_SECONDS)
        return vector

    async def _semantic(self, query: str, corpus: dict[str, Any]) -> str | None:
        if self._embedder is None or not self._embedder.configured:
            return None
        query_vector = await self._embedder.embed(query)
        if query_vector is None:
            logger.info("Query embedding unavailable, using keyword retrieval")
            return None

        best_name, best_score = None, 0.0
        for name, content in corpus.items():
            text = section_text(content)
            if not text.strip():
                continue
            vector = await self._section_vector(text)
            if vector is None:
                continue
            score = cosine_similarity(query_vector, vector)
            if score > best_score:
                best_name, best_score = name, score

        if best_name is None or best_score <= SIMILARITY_THRESHOLD:
            logger.info("Best semantic match %s scored %.2f, using keyword retrieval",
                        best_name, best_score)
            return None
        logger.debug("Semantic retrieval picked %s (%.2f)", best_name, best_score)
        return summarize(section_text(corpus[best_name]))

    async def retrieve(self, query: str, corpus: dict[str, Any]) -> str | None:
        """Return a grounding snippet for *query*, or ``None``."""
        if not query or not corpus:
            return None
        try:
            snippet = await self._semantic(query, corpus)
        except Exception as exc:
            logger.warning("Semantic retrieval failed, using keyword retrieval: %s", exc)
            snippet = None
        return snippet if snippet is not None else keyword_search(query, corpus)
