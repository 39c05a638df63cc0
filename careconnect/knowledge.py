"""Read-only access to the clinic knowledge base and behavioural policy.

Both live in the ``knowledge_base`` collection and are curated elsewhere;
this module only reads them, caching each for ``KNOWLEDGE_TTL_SECONDS``.
"""

from __future__ import annotations

import logging
from typing import Any

from careconnect.config import KNOWLEDGE_TTL_SECONDS
from careconnect.services.cache import TTLCache
from careconnect.services.storage import KNOWLEDGE_BASE, DocumentStore

logger = logging.getLogger(__name__)

# corpus section name → document id in the knowledge_base collection
KNOWLEDGE_SECTIONS: dict[str, str] = {
    "promotions": "promotions",
    "pricing": "products",
    "faqs": "faqs",
    "clinic": "clinic_info",
    "reviews": "reviews",
}
POLICY_DOCUMENT = "policy_context"

_CORPUS_KEY = "knowledge:corpus"
_POLICY_KEY = "knowledge:policy"

DEFAULT_POLICY = """\
# CareConnect AI fallback policy
- Reply in the same language the user writes in.
- Keep every reply within 250 characters and end on a complete sentence.
- Give accurate, safe medical/aesthetic information only; never diagnose.
- After three or more exchanges, it is fine to suggest booking a consultation.
- Always mention that results can vary from person to person.
"""


class KnowledgeRepository:
    def __init__(
        self,
        store: DocumentStore,
        cache: TTLCache,
        *,
        ttl: float = KNOWLEDGE_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._cache = cache
        self._ttl = ttl

    async def corpus(self) -> dict[str, Any]:
        """Section name → content (text or structured records).  Empty on failure."""
        cached = self._cache.get(_CORPUS_KEY)
        if cached is not None:
            return cached

        sections: dict[str, Any] = {}
        try:
            for name, doc_id in KNOWLEDGE_SECTIONS.items():
                doc = await self._store.get(KNOWLEDGE_BASE, doc_id)
                content = (doc or {}).get("content")
                if content:
                    sections[name] = content
        except Exception as exc:
            logger.error("Knowledge base load failed: %s", exc)
            return {}

        self._cache.set(_CORPUS_KEY, sections, self._ttl)
        logger.info("Knowledge base loaded (%d sections)", len(sections))
        return sections

    async def policy(self) -> str:
        """Behavioural policy text, or :data:`DEFAULT_POLICY` if none is stored."""
        cached = self._cache.get(_POLICY_KEY)
        if cached is not None:
            return cached
        try:
            doc = await self._store.get(KNOWLEDGE_BASE, POLICY_DOCUMENT)
        except Exception as exc:
            logger.error("Policy load failed, using default policy: %s", exc)
            return DEFAULT_POLICY

        text = ((doc or {}).get("content") or "").strip()
        if not text:
            logger.warning("No stored policy found, using default policy")
            text = DEFAULT_POLICY
        self._cache.set(_POLICY_KEY, text, self._ttl)
        return text
