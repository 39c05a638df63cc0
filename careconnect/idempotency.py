"""At-most-once processing of inbound events and echo-safe outbound sends.

ChannelTalk delivers webhooks at least once and also reflects the bot's
own messages back as new webhook events.  The markers kept here collapse
both into a single effect:

``processed:<message id>``       inbound id seen (also pre-set for our own sends)
``outbound:<correlation id>``    id of a message we sent, short-lived
``recent_bot_send:<user id>``    digest of the last text sent to the user

The cache markers are backed by the durable ``outbound_messages``
collection for echoes that arrive after the cache entry has expired.
Every check errs on the side of dropping an event rather than replying
twice.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any, Protocol

from careconnect.config import (
    DEBOUNCE_TTL_SECONDS,
    OUTBOUND_TTL_SECONDS,
    PROCESSED_TTL_SECONDS,
)
from careconnect.models import utcnow
from careconnect.services.cache import TTLCache
from careconnect.services.metrics import metrics
from careconnect.services.storage import OUTBOUND_MESSAGES, DocumentStore

logger = logging.getLogger(__name__)

PROCESSED_PREFIX = "processed:"
OUTBOUND_PREFIX = "outbound:"
DEBOUNCE_PREFIX = "recent_bot_send:"


def _digest(text: str) -> str:
    return hashlib.sha1(text.strip().encode("utf-8")).hexdigest()


class EchoGuard:
    def __init__(
        self,
        cache: TTLCache,
        store: DocumentStore,
        *,
        processed_ttl: float = PROCESSED_TTL_SECONDS,
        outbound_ttl: float = OUTBOUND_TTL_SECONDS,
        debounce_ttl: float = DEBOUNCE_TTL_SECONDS,
    ) -> None:
        self._cache = cache
        self._store = store
        self._processed_ttl = processed_ttl
        self._outbound_ttl = outbound_ttl
        self._debounce_ttl = debounce_ttl

    # ── Inbound ──────────────────────────────────────────────────────

    def claim_inbound(self, message_id: str) -> bool:
        """Mark *message_id* as processed.  ``False`` if it already was."""
        return self._cache.add(f"{PROCESSED_PREFIX}{message_id}", True, self._processed_ttl)

    def is_cached_echo(self, external_id: str | None) -> bool:
        if not external_id:
            return False
        return self._cache.has(f"{OUTBOUND_PREFIX}{external_id}") or self._cache.has(
            f"{PROCESSED_PREFIX}{external_id}"
        )

    async def is_durable_echo(self, *message_ids: str | None) -> bool:
        """Whether any id appears in the durable outbound log.

        A storage failure is logged and reported as "not an echo".
        """
        for message_id in filter(None, message_ids):
            try:
                if await self._store.get(OUTBOUND_MESSAGES, message_id):
                    return True
            except Exception as exc:
                logger.warning("Outbound log lookup failed for %s: %s", message_id, exc)
        return False

    # ── Outbound ─────────────────────────────────────────────────────

    def register_outbound(self, correlation_id: str) -> None:
        """Pre-register an id we are about to send, before the network call."""
        self._cache.set(f"{PROCESSED_PREFIX}{correlation_id}", True, self._processed_ttl)
        self._cache.set(f"{OUTBOUND_PREFIX}{correlation_id}", True, self._outbound_ttl)

    def is_repeat_send(self, user_id: str, text: str) -> bool:
        return self._cache.get(f"{DEBOUNCE_PREFIX}{user_id}") == _digest(text)

    def mark_sent(self, user_id: str, text: str) -> None:
        self._cache.set(f"{DEBOUNCE_PREFIX}{user_id}", _digest(text), self._debounce_ttl)

    async def record_outbound(
        self,
        correlation_id: str,
        *,
        user_id: str,
        user_chat_id: str,
        text: str,
        platform_message_id: str | None = None,
    ) -> None:
        document = {
            "user_id": user_id,
            "user_chat_id": user_chat_id,
            "message": text,
            "correlation_id": correlation_id,
            "created_at": utcnow().isoformat(),
        }
        try:
            await self._store.merge(OUTBOUND_MESSAGES, correlation_id, document)
            if platform_message_id and platform_message_id != correlation_id:
                await self._store.merge(OUTBOUND_MESSAGES, platform_message_id, document)
        except Exception as exc:
            logger.warning("Outbound log write failed for %s: %s", correlation_id, exc)


class Transport(Protocol):
    @property
    def configured(self) -> bool: ...

    async def post_message(self, user_chat_id: str, text: str, message_id: str) -> dict[str, Any]: ...


class Messenger:
    """Sends bot messages with the echo bookkeeping around each send."""

    def __init__(self, transport: Transport, guard: EchoGuard) -> None:
        self._transport = transport
        self._guard = guard

    async def send(self, user_chat_id: str, text: str, user_id: str = "") -> bool:
        """Send *text* to the chat.  Returns ``True`` if it was (or already had been) sent."""
        if not text or not text.strip():
            return False
        if user_id and self._guard.is_repeat_send(user_id, text):
            logger.info("Suppressed repeated bot message to %s", user_id)
            metrics.record_event("duplicate_send_suppressed")
            return True

        correlation_id = str(uuid.uuid4())
        self._guard.register_outbound(correlation_id)

        if not self._transport.configured:
            logger.warning("Chat transport not configured; dropping message to %s", user_chat_id)
            return False
        try:
            response = await self._transport.post_message(user_chat_id, text, correlation_id)
        except Exception as exc:
            logger.error("Send to chat %s failed (user=%s): %s", user_chat_id, user_id, exc)
            return False

        if user_id:
            self._guard.mark_sent(user_id, text)
        platform_id = ((response or {}).get("message") or {}).get("id")
        await self._guard.record_outbound(
            correlation_id,
            user_id=user_id,
            user_chat_id=user_chat_id,
            text=text,
            platform_message_id=platform_id,
        )
        logger.info("Sent bot message %s to chat %s", correlation_id, user_chat_id)
        return True
