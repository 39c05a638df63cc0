"""Webhook orchestrator: one inbound ChannelTalk event → at most one reply.

Design decisions
────────────────
• **Explicit stages with early returns.**  Each filter either returns a
  :class:`WebhookOutcome` (stop, acknowledge with that text) or ``None``
  (continue).  The order is the contract:

    1. payload shape           → ``ignored: missing data``
    2. system log / empty      → ``ignored``
    3. inbound dedup           → ``already_processed``
    4. bot-authored            → ``bot_message_ignored``
    5. echo of our own send    → ``outbound_echo_ignored`` / ``outbound_db_ignored``
    6. (inbound message logged)
    7. manager message         → ``ai_mode_activated`` / ``human_mode_activated``
    8. user attachment         → ``attachment_handled``
    9. HUMAN_MODE gate         → ``human_mode_timeout_recovered`` / ``human_mode_active``
    10. AI turn (LangGraph)     → ``ok``

• **Persisted intent state.**  The oracle's declared ``nextState`` wins;
  without one, a tool-forced state (slot available → AWAITING_INFO,
  booking confirmed → IDLE) is saved.
• **Attachments are handled after dedup and echo checks** so a
  redelivered attachment event does not send the notice twice.
• **The orchestrator alone sends and persists.**  Tools and adapters
  only return values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import ValidationError

from careconnect.agent import TurnState, create_turn_graph
from careconnect.api.schemas import WebhookPayload
from careconnect.config import HUMAN_MODE_TIMEOUT_MINUTES, MANAGER_RESET_TOKEN
from careconnect.decision import DecisionMaker, PromptContextBuilder
from careconnect.idempotency import EchoGuard, Messenger, Transport
from careconnect.knowledge import KnowledgeRepository
from careconnect.language import attachment_notice, detect_language, human_timeout_notice
from careconnect.models import (
    MessageRecord,
    Mode,
    Sender,
    Session,
    transition_intent,
)
from careconnect.responder import Responder
from careconnect.retrieval import KnowledgeRetriever
from careconnect.services.cache import TTLCache, get_cache
from careconnect.services.calendar_client import CalendarClient
from careconnect.services.channeltalk import ChannelTalkClient
from careconnect.services.embeddings import EmbeddingClient
from careconnect.services.llm import LLMClient
from careconnect.services.metrics import metrics
from careconnect.services.storage import DocumentStore, create_document_store
from careconnect.session import ConversationLog, SessionStore
from careconnect.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    OK = "ok"
    IGNORED = "ignored"
    MISSING_DATA = "ignored: missing data"
    ALREADY_PROCESSED = "already_processed"
    BOT_MESSAGE_IGNORED = "bot_message_ignored"
    OUTBOUND_ECHO_IGNORED = "outbound_echo_ignored"
    OUTBOUND_DB_IGNORED = "outbound_db_ignored"
    AI_MODE_ACTIVATED = "ai_mode_activated"
    HUMAN_MODE_ACTIVATED = "human_mode_activated"
    ATTACHMENT_HANDLED = "attachment_handled"
    HUMAN_MODE_TIMEOUT_RECOVERED = "human_mode_timeout_recovered"
    HUMAN_MODE_ACTIVE = "human_mode_active"


@dataclass
class InboundEvent:
    message_id: str
    person_type: str
    text: str
    user_id: str
    user_chat_id: str
    chat_key: str
    external_message_id: str | None
    attachment_kind: str | None
    is_log: bool

    @classmethod
    def from_payload(cls, payload: WebhookPayload) -> InboundEvent:
        entity, chat = payload.entity, payload.refers.user_chat
        return cls(
            message_id=entity.id or "",
            person_type=(entity.person_type or "").lower(),
            text=entity.text,
            user_id=chat.user_id,
            user_chat_id=chat.id,
            chat_key=chat.contact_key or "",
            external_message_id=entity.external_message_id,
            attachment_kind=entity.attachment_kind(),
            is_log=entity.log is not None,
        )

    @property
    def sender(self) -> Sender:
        return Sender.MANAGER if self.person_type == "manager" else Sender.USER

    @property
    def language(self) -> str:
        return detect_language(self.text)


class Orchestrator:
    def __init__(
        self,
        *,
        sessions: SessionStore,
        conversation_log: ConversationLog,
        guard: EchoGuard,
        messenger: Messenger,
        graph,
        human_timeout_minutes: int = HUMAN_MODE_TIMEOUT_MINUTES,
        reset_token: str = MANAGER_RESET_TOKEN,
    ) -> None:
        self.sessions = sessions
        self._log = conversation_log
        self._guard = guard
        self._messenger = messenger
        self._graph = graph
        self._human_timeout = timedelta(minutes=human_timeout_minutes)
        self._reset_token = reset_token

    async def handle(self, payload: dict[str, Any] | WebhookPayload) -> WebhookOutcome:
        """Run one webhook event through every stage and return the acknowledgement."""
        try:
            parsed = payload if isinstance(payload, WebhookPayload) else WebhookPayload.model_validate(payload)
        except ValidationError:
            return self._finish(WebhookOutcome.MISSING_DATA, None)
        event = InboundEvent.from_payload(parsed)
        if not event.message_id or not event.user_id:
            return self._finish(WebhookOutcome.MISSING_DATA, event)

        outcome = self._filter_noise(event) or self._dedupe(event) or self._filter_bot(event)
        if outcome is None:
            outcome = await self._filter_echo(event)
        if outcome is not None:
            return self._finish(outcome, event)

        await self._log_inbound(event)
        session = await self.sessions.load(event.user_id)

        outcome = await self._manager_override(event)
        if outcome is None:
            outcome = await self._handle_attachment(event)
        if outcome is None:
            outcome = await self._gate_human_mode(event, session)
        if outcome is None:
            outcome = await self._run_ai_turn(event)
        return self._finish(outcome, event)

    def _finish(self, outcome: WebhookOutcome, event: InboundEvent | None) -> WebhookOutcome:
        metrics.record_event(outcome.value)
        if event is None:
            logger.info("Webhook -> %s", outcome.value)
        else:
            logger.info("[%s/%s] Webhook -> %s", event.user_id, event.message_id, outcome.value)
        return outcome

    # ── Filters ──────────────────────────────────────────────────────

    def _filter_noise(self, event: InboundEvent) -> WebhookOutcome | None:
        if event.is_log:
            return WebhookOutcome.IGNORED
        if not event.text.strip() and event.attachment_kind is None:
            return WebhookOutcome.IGNORED
        return None

    def _dedupe(self, event: InboundEvent) -> WebhookOutcome | None:
        if not self._guard.claim_inbound(event.message_id):
            return WebhookOutcome.ALREADY_PROCESSED
        return None

    def _filter_bot(self, event: InboundEvent) -> WebhookOutcome | None:
        if event.person_type == "bot":
            return WebhookOutcome.BOT_MESSAGE_IGNORED
        return None

    async def _filter_echo(self, event: InboundEvent) -> WebhookOutcome | None:
        if self._guard.is_cached_echo(event.external_message_id):
            return WebhookOutcome.OUTBOUND_ECHO_IGNORED
        if await self._guard.is_durable_echo(event.message_id, event.external_message_id):
            return WebhookOutcome.OUTBOUND_DB_IGNORED
        return None

    # ── Mode handling ────────────────────────────────────────────────

    async def _manager_override(self, event: InboundEvent) -> WebhookOutcome | None:
        if event.sender is not Sender.MANAGER:
            return None
        if event.text.strip() == self._reset_token:
            await self.sessions.set_mode(event.user_id, Mode.AI_MODE, event.user_chat_id)
            return WebhookOutcome.AI_MODE_ACTIVATED
        await self.sessions.set_mode(event.user_id, Mode.HUMAN_MODE, event.user_chat_id)
        return WebhookOutcome.HUMAN_MODE_ACTIVATED

    async def _handle_attachment(self, event: InboundEvent) -> WebhookOutcome | None:
        if event.attachment_kind is None:
            return None
        await self.sessions.set_mode(
            event.user_id,
            Mode.HUMAN_MODE,
            event.user_chat_id,
            attachment_received=True,
            attachment_type=event.attachment_kind,
        )
        await self._send(event, attachment_notice(event.attachment_kind, event.language))
        return WebhookOutcome.ATTACHMENT_HANDLED

    def _human_mode_expired(self, session: Session, now: datetime) -> bool:
        last = session.last_updated_at
        return last is not None and now - last > self._human_timeout

    async def _gate_human_mode(self, event: InboundEvent, session: Session) -> WebhookOutcome | None:
        if session.mode is not Mode.HUMAN_MODE:
            return None
        if self._human_mode_expired(session, self.sessions.now()):
            await self.sessions.set_mode(event.user_id, Mode.AI_MODE, event.user_chat_id)
            await self._send(event, human_timeout_notice(event.language))
            return WebhookOutcome.HUMAN_MODE_TIMEOUT_RECOVERED
        await self.sessions.touch(event.user_id)
        return WebhookOutcome.HUMAN_MODE_ACTIVE

    # ── AI turn ──────────────────────────────────────────────────────

    async def _run_ai_turn(self, event: InboundEvent) -> WebhookOutcome:
        session = await self.sessions.record_activity(event.user_id, event.user_chat_id)
        current = session.intent_state
        state: TurnState = {
            "user_input": event.text,
            "user_id": event.user_id,
            "user_chat_id": event.user_chat_id,
            "language": event.language,
            "intent_state": current,
        }
        result = await self._graph.ainvoke(state)

        await self._send(event, result.get("reply", ""))

        proposed = result["decision"].next_state
        if proposed is None:
            proposed = result.get("response_state", current)
        next_state = transition_intent(session.mode, current, proposed)
        if next_state is not current:
            await self.sessions.set_intent_state(event.user_id, next_state)
            logger.info("[%s] Intent %s -> %s", event.user_id, current.value, next_state.value)
        return WebhookOutcome.OK

    # ── Persistence ──────────────────────────────────────────────────

    async def _log_inbound(self, event: InboundEvent) -> None:
        text = event.text
        if not text.strip() and event.attachment_kind:
            text = f"[{event.attachment_kind} attachment received]"
        await self._log.append(MessageRecord(
            user_id=event.user_id,
            user_chat_id=event.user_chat_id,
            sender=event.sender,
            text=text,
            chat_key=event.chat_key,
        ))

    async def _send(self, event: InboundEvent, text: str) -> bool:
        if not text or not text.strip():
            return False
        sent = await self._messenger.send(event.user_chat_id, text, event.user_id)
        if sent:
            await self._log.append(MessageRecord(
                user_id=event.user_id,
                user_chat_id=event.user_chat_id,
                sender=Sender.BOT,
                text=text,
                chat_key=event.chat_key,
            ))
        return sent


# ── Factory ──────────────────────────────────────────────────────────


def create_orchestrator(
    *,
    store: DocumentStore | None = None,
    cache: TTLCache | None = None,
    transport: Transport | None = None,
    llm: LLMClient | None = None,
    calendar: CalendarClient | None = None,
    embedder: EmbeddingClient | None = None,
) -> Orchestrator:
    """Wire the full pipeline; every collaborator can be swapped for tests or the console."""
    store = store or create_document_store()
    cache = cache or get_cache()
    llm = llm or LLMClient()
    calendar = calendar or CalendarClient()
    embedder = embedder or EmbeddingClient()
    transport = transport or ChannelTalkClient()

    sessions = SessionStore(store)
    conversation_log = ConversationLog(store)
    guard = EchoGuard(cache, store)
    context = PromptContextBuilder(
        sessions, conversation_log, KnowledgeRepository(store, cache), KnowledgeRetriever(embedder, cache),
    )
    graph = create_turn_graph(
        DecisionMaker(llm, context),
        ToolExecutor(calendar, store, sessions),
        Responder(llm, context),
    )
    logger.info("Orchestrator ready (storage=%s, llm configured=%s)", type(store).__name__, llm.configured)
    return Orchestrator(
        sessions=sessions,
        conversation_log=conversation_log,
        guard=guard,
        messenger=Messenger(transport, guard),
        graph=graph,
    )
