"""Per-user session record and the append-only conversation log.

Both sit on top of a :class:`~careconnect.services.storage.DocumentStore`.
Storage failures never escape from here: a failed read is reported as "no
session" (the caller falls back to AI_MODE / IDLE / NORMAL) and a failed
write is logged and dropped, because answering with slightly stale state
beats dropping the user's message.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from careconnect.config import (
    CONSULTATION_READY_THRESHOLD,
    CONVERSATION_GAP_MINUTES,
    HISTORY_LIMIT,
)
from careconnect.models import (
    BookingState,
    ConversationState,
    IntentState,
    MessageRecord,
    Mode,
    Sender,
    Session,
    utcnow,
)
from careconnect.services.storage import CONVERSATIONS, SESSIONS, DocumentStore

logger = logging.getLogger(__name__)


class SessionStore:
    """Partial-merge access to ``sessions/<user_id>``."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        gap_minutes: int = CONVERSATION_GAP_MINUTES,
        consultation_threshold: int = CONSULTATION_READY_THRESHOLD,
    ) -> None:
        self._store = store
        self._clock = clock
        self._gap = timedelta(minutes=gap_minutes)
        self._consultation_threshold = consultation_threshold

    def now(self) -> datetime:
        return self._clock()

    async def get(self, user_id: str) -> Session | None:
        try:
            doc = await self._store.get(SESSIONS, user_id)
        except Exception as exc:
            logger.warning("Session read failed for %s: %s", user_id, exc)
            return None
        return Session.from_document(user_id, doc) if doc else None

    async def load(self, user_id: str) -> Session:
        """Like :meth:`get` but never ``None``."""
        return await self.get(user_id) or Session.default(user_id)

    async def merge(self, user_id: str, fields: dict[str, Any]) -> bool:
        """Write *fields* onto the session.  Returns ``False`` on storage failure."""
        document = {"user_id": user_id}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            document[key] = value
        try:
            await self._store.merge(SESSIONS, user_id, document)
        except Exception as exc:
            logger.warning("Session write failed for %s (%s): %s", user_id, sorted(fields), exc)
            return False
        return True

    async def record_activity(self, user_id: str, user_chat_id: str | None = None) -> Session:
        """Advance the conversation counter for a new inbound user turn.

        Turns closer together than the gap increment the count; a longer
        silence restarts it at 1 and resets the state to NORMAL.  Reaching
        the threshold promotes a NORMAL session to CONSULTATION_READY.
        """
        session = await self.load(user_id)
        now = self.now()
        last = session.last_message_time
        if last is not None and now - last < self._gap:
            count = session.conversation_count + 1
            state = session.conversation_state
        else:
            count = 1
            state = ConversationState.NORMAL
        if count >= self._consultation_threshold and state is ConversationState.NORMAL:
            state = ConversationState.CONSULTATION_READY
            logger.info("Session %s promoted to CONSULTATION_READY after %d turns", user_id, count)

        fields: dict[str, Any] = {
            "conversation_count": count,
            "conversation_state": state,
            "last_message_time": now,
            "last_updated_at": now,
        }
        if user_chat_id:
            fields["user_chat_id"] = user_chat_id
        await self.merge(user_id, fields)

        session.conversation_count = count
        session.conversation_state = state
        session.last_message_time = now
        session.last_updated_at = now
        return session

    async def set_mode(self, user_id: str, mode: Mode, user_chat_id: str | None = None,
                       **extra: Any) -> bool:
        fields: dict[str, Any] = {"mode": mode, "last_updated_at": self.now(), **extra}
        if user_chat_id:
            fields["user_chat_id"] = user_chat_id
        logger.info("Session %s mode -> %s", user_id, mode.value)
        return await self.merge(user_id, fields)

    async def touch(self, user_id: str) -> bool:
        return await self.merge(user_id, {"last_updated_at": self.now()})

    async def set_intent_state(self, user_id: str, state: IntentState) -> bool:
        return await self.merge(user_id, {"intent_state": state})

    async def update_booking_state(self, user_id: str, **changes: Any) -> BookingState:
        """Merge *changes* into the booking sub-record, keeping other keys."""
        session = await self.load(user_id)
        merged = BookingState(**{**session.booking_state.to_document(),
                                 **{k: v for k, v in changes.items() if v is not None}})
        await self.merge(user_id, {"booking_state": merged.to_document()})
        return merged

    async def increment_human_requests(self, user_id: str) -> int:
        session = await self.load(user_id)
        count = session.human_request_count + 1
        await self.merge(user_id, {"human_request_count": count})
        return count


class ConversationLog:
    """Append-only message log used to rebuild LLM history."""

    def __init__(self, store: DocumentStore, *, limit: int = HISTORY_LIMIT) -> None:
        self._store = store
        self._limit = limit

    async def append(self, record: MessageRecord) -> None:
        try:
            await self._store.add(CONVERSATIONS, record.to_document())
        except Exception as exc:
            logger.warning(
                "Conversation write failed for %s (%s): %s", record.user_id, record.sender.value, exc,
            )

    async def history(
        self, user_id: str, *, limit: int | None = None, current_text: str | None = None,
    ) -> list[MessageRecord]:
        """Most recent turns for *user_id* in chronological order, without manager turns.

        If the newest record is the inbound message being answered right
        now (*current_text*), it is left out so it is not sent twice.
        """
        try:
            rows = await self._store.recent(
                CONVERSATIONS, field="user_id", value=user_id,
                order_by="timestamp", limit=limit or self._limit,
            )
        except Exception as exc:
            logger.warning("History read failed for %s: %s", user_id, exc)
            return []

        records = [MessageRecord.from_document(row) for row in rows]
        if (
            current_text is not None
            and records
            and records[0].sender is Sender.USER
            and records[0].text == current_text
        ):
            records = records[1:]
        records.reverse()
        return [r for r in records if r.sender is not Sender.MANAGER and r.text]
