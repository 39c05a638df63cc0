"""Shared test fixtures for the CareConnect test suite."""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py reads these values on load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("VOYAGE_API_KEY", "")
    os.environ.setdefault("CHANNELTALK_ACCESS_KEY", "test-access-key")
    os.environ.setdefault("CHANNELTALK_ACCESS_SECRET", "test-access-secret")
    os.environ.setdefault("GOOGLE_ACCESS_TOKEN", "test-google-token")
    os.environ.setdefault("STORAGE_BACKEND", "memory")
    os.environ.setdefault("METRICS_ENABLED", "false")


# ── Clocks ───────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock for :class:`TTLCache` that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """Wall clock (aware UTC datetimes) for sessions and tools."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 2, 0, tzinfo=UTC)  # 11:00 KST, a Wednesday

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def utc_clock():
    return FakeUtcClock()


# ── Collaborator fakes ───────────────────────────────────────────────


class FakeLLM:
    """Returns queued replies in order; an Exception instance in the queue is raised."""

    configured = True

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def generate(self, system_instruction, history, turn_text, *, max_tokens,
                       temperature=0.7, operation="generate"):
        self.calls.append({
            "system_instruction": system_instruction,
            "history": list(history),
            "turn_text": turn_text,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "operation": operation,
        })
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingTransport:
    """Chat transport that records every post instead of calling ChannelTalk."""

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.sent: list[dict[str, str]] = []

    async def post_message(self, user_chat_id: str, text: str, message_id: str) -> dict[str, Any]:
        self.sent.append({"user_chat_id": user_chat_id, "text": text, "message_id": message_id})
        return {"message": {"id": f"platform-{len(self.sent)}"}}


@pytest.fixture
def make_llm():
    """``make_llm(reply1, reply2, ...)`` → a :class:`FakeLLM`."""
    return FakeLLM


@pytest.fixture
def fake_calendar():
    calendar = AsyncMock()
    calendar.configured = True
    calendar.query_free_busy.return_value = []
    calendar.insert_event.return_value = "evt-123"
    return calendar


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def store():
    from careconnect.services.storage import InMemoryDocumentStore

    return InMemoryDocumentStore()


@pytest.fixture
def cache(fake_clock):
    from careconnect.services.cache import TTLCache

    return TTLCache(clock=fake_clock)


@pytest.fixture
def sessions(store, utc_clock):
    from careconnect.session import SessionStore

    return SessionStore(store, clock=utc_clock, gap_minutes=10, consultation_threshold=3)


@pytest.fixture
def conversation_log(store):
    from careconnect.session import ConversationLog

    return ConversationLog(store, limit=10)


@pytest.fixture
def context_builder(store, cache, sessions, conversation_log):
    """Prompt context over the in-memory store, keyword retrieval only."""
    from careconnect.decision import PromptContextBuilder
    from careconnect.knowledge import KnowledgeRepository
    from careconnect.retrieval import KnowledgeRetriever

    return PromptContextBuilder(
        sessions, conversation_log, KnowledgeRepository(store, cache), KnowledgeRetriever(None, cache),
    )


# ── Webhook payloads ─────────────────────────────────────────────────


@pytest.fixture
def make_payload():
    """Factory for ChannelTalk webhook bodies."""

    def _make(
        text: str = "안녕하세요",
        *,
        person_type: str = "user",
        message_id: str | None = None,
        user_id: str = "user-1",
        user_chat_id: str = "chat-1",
        **entity_extra: Any,
    ) -> dict[str, Any]:
        entity = {
            "id": message_id or f"msg-{uuid.uuid4().hex[:8]}",
            "personType": person_type,
            "plainText": text,
            "blocks": [{"type": "text", "value": text}] if text else [],
            **entity_extra,
        }
        return {"entity": entity, "refers": {"userChat": {"id": user_chat_id, "userId": user_id}}}

    return _make
