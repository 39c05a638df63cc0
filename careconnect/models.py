"""Domain types shared across the pipeline.

Session state is split into a coarse *mode* gate (AI vs human operator)
and a fine-grained *intent state* that tracks the booking dialogue.  The
intent state is a closed enum: anything unrecognised coming back from
storage or from the LLM collapses to ``IDLE``, and the per-mode transition
table decides whether a proposed move is allowed at all.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


# ── Enums ────────────────────────────────────────────────────────────


class Mode(str, Enum):
    AI_MODE = "AI_MODE"
    HUMAN_MODE = "HUMAN_MODE"

    @classmethod
    def parse(cls, value: Any) -> Mode:
        try:
            return cls(value)
        except ValueError:
            return cls.AI_MODE


class IntentState(str, Enum):
    """Where the user is in the booking dialogue."""

    IDLE = "IDLE"
    AWAITING_TIME = "AWAITING_TIME"
    AWAITING_INFO = "AWAITING_INFO"

    @classmethod
    def parse(cls, value: Any) -> IntentState:
        """Map any raw value onto a known state, defaulting to ``IDLE``."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        if value:
            logger.debug("Unknown intent state %r, falling back to IDLE", value)
        return cls.IDLE


class ConversationState(str, Enum):
    NORMAL = "NORMAL"
    CONSULTATION_READY = "CONSULTATION_READY"

    @classmethod
    def parse(cls, value: Any) -> ConversationState:
        try:
            return cls(value)
        except ValueError:
            return cls.NORMAL


class Sender(str, Enum):
    USER = "user"
    MANAGER = "manager"
    BOT = "bot"


# ── Intent transition table ─────────────────────────────────────────

_ALL_INTENTS = frozenset(IntentState)

INTENT_TRANSITIONS: dict[Mode, dict[IntentState, frozenset[IntentState]]] = {
    Mode.AI_MODE: {state: _ALL_INTENTS for state in IntentState},
    # An operator owns the conversation; the dialogue state is frozen.
    Mode.HUMAN_MODE: {state: frozenset({state}) for state in IntentState},
}


def transition_intent(mode: Mode, current: IntentState, proposed: Any) -> IntentState:
    """Return the intent state after applying *proposed* under *mode*.

    ``None`` holds the current state.  A proposal missing from the table
    for this mode is rejected and the current state is kept.
    """
    if proposed is None or proposed == "":
        return current
    target = IntentState.parse(proposed)
    allowed = INTENT_TRANSITIONS[mode].get(current, frozenset())
    if target not in allowed:
        logger.info(
            "Rejected intent transition %s -> %s in %s", current.value, target.value, mode.value,
        )
        return current
    return target


# ── Decisions ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Answer:
    """Reply directly without running a tool.

    ``next_state`` is ``None`` when the oracle did not declare one.
    """

    response: str
    next_state: IntentState | None
    grounding_context: str | None = None
    fallback: bool = False


@dataclass(frozen=True)
class CallFunction:
    """Run a tool, then generate the reply from its result."""

    function_name: str
    parameters: dict[str, Any]
    next_state: IntentState | None
    grounding_context: str | None = None


Decision = Answer | CallFunction


# ── Tool results ─────────────────────────────────────────────────────


class ToolAction(str, Enum):
    TIME_SLOT_AVAILABLE = "time_slot_available"
    TIME_SLOT_UNAVAILABLE = "time_slot_unavailable"
    INVALID_DATETIME_FORMAT = "invalid_datetime_format"
    NATURAL_LANGUAGE_PARSE_FAILED = "natural_language_parse_failed"
    INVALID_ISO_FORMAT = "invalid_iso_format"
    VALIDATION_FAILED = "validation_failed"
    CALENDAR_BOOKING_FAILED = "calendar_booking_failed"
    BOOKING_CONFIRMED = "booking_confirmed"
    RATE_LIMITED = "rate_limited"
    HUMAN_AGENT_REQUESTED = "human_agent_requested"
    SYSTEM_ERROR = "system_error"
    UNKNOWN_FUNCTION = "unknown_function"


@dataclass
class ToolResult:
    success: bool
    action: ToolAction
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready view handed to the response generator."""
        payload: dict[str, Any] = {"success": self.success, "action": self.action.value}
        if self.message:
            payload["message"] = self.message
        payload.update(self.data)
        return payload


# ── Session ──────────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Read a stored timestamp (ISO string or datetime) as an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _as_int(value: Any, default: int = 0) -> int:
    # DynamoDB hands numbers back as Decimal
    if isinstance(value, (int, Decimal)):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class BookingState:
    step: str | None = None
    proposed_time: str | None = None
    selected_time: str | None = None
    customer_name: str | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any] | None) -> BookingState:
        doc = doc or {}
        return cls(
            step=doc.get("step"),
            proposed_time=doc.get("proposed_time"),
            selected_time=doc.get("selected_time"),
            customer_name=doc.get("customer_name"),
        )

    def to_document(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Session:
    user_id: str
    user_chat_id: str | None = None
    mode: Mode = Mode.AI_MODE
    intent_state: IntentState = IntentState.IDLE
    conversation_count: int = 0
    conversation_state: ConversationState = ConversationState.NORMAL
    last_message_time: datetime | None = None
    last_updated_at: datetime | None = None
    booking_state: BookingState = field(default_factory=BookingState)
    human_request_count: int = 0

    @classmethod
    def default(cls, user_id: str) -> Session:
        """The state assumed when no session exists or it cannot be read."""
        return cls(user_id=user_id)

    @classmethod
    def from_document(cls, user_id: str, doc: dict[str, Any]) -> Session:
        return cls(
            user_id=doc.get("user_id") or user_id,
            user_chat_id=doc.get("user_chat_id"),
            mode=Mode.parse(doc.get("mode")),
            intent_state=IntentState.parse(doc.get("intent_state")),
            conversation_count=_as_int(doc.get("conversation_count")),
            conversation_state=ConversationState.parse(doc.get("conversation_state")),
            last_message_time=parse_timestamp(doc.get("last_message_time")),
            last_updated_at=parse_timestamp(doc.get("last_updated_at")),
            booking_state=BookingState.from_document(doc.get("booking_state")),
            human_request_count=_as_int(doc.get("human_request_count")),
        )


@dataclass
class MessageRecord:
    """One entry of the append-only conversation log."""

    user_id: str
    user_chat_id: str
    sender: Sender
    text: str
    chat_key: str = ""
    timestamp: datetime = field(default_factory=utcnow)

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_chat_id": self.user_chat_id,
            "chat_key": self.chat_key,
            "sender": self.sender.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> MessageRecord:
        try:
            sender = Sender(doc.get("sender"))
        except ValueError:
            sender = Sender.USER
        return cls(
            user_id=doc.get("user_id", ""),
            user_chat_id=doc.get("user_chat_id", ""),
            sender=sender,
            text=doc.get("text") or "",
            chat_key=doc.get("chat_key") or "",
            timestamp=parse_timestamp(doc.get("timestamp")) or utcnow(),
        )
