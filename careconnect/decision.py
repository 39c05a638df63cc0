"""Decision oracle adapter: one LLM call that picks ANSWER or CALL_FUNCTION.

The oracle is asked for strict JSON but does not always comply, so the
raw text goes through :func:`careconnect.json_repair.parse_json_object`
and then :func:`normalize_decision`, which also accepts the other
tool-call shapes models tend to produce::

    {"action": "CALL_FUNCTION", "functionName": ..., "parameters": {...}}
    {"function_call": {"name": ..., "arguments": {...}}}
    {"functionCall": {"name": ..., "args": {...}}}
    {"function": ..., "args": {...}}

``decide`` never raises: anything unusable becomes an ``Answer`` marked
``fallback`` carrying a localized message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from careconnect.json_repair import parse_json_object
from careconnect.knowledge import KnowledgeRepository
from careconnect.language import ai_error_message, rephrase_message
from careconnect.models import (
    Answer,
    CallFunction,
    Decision,
    IntentState,
    MessageRecord,
)
from careconnect.prompts import assemble_system_prompt
from careconnect.retrieval import KnowledgeRetriever
from careconnect.services.llm import LLMClient
from careconnect.session import ConversationLog, SessionStore

logger = logging.getLogger(__name__)

DECISION_MAX_TOKENS = 500
DECISION_TEMPERATURE = 0.7

DECISION_TURN_TEMPLATE = "User Input: {user_input}\nRAG Context (optional): {context}\nReturn STRICT JSON."


# ── Shared prompt inputs ─────────────────────────────────────────────


@dataclass
class PromptInputs:
    system_instruction: str
    history: list[MessageRecord]
    snippet: str | None


class PromptContextBuilder:
    """Gathers what both oracle calls of a turn need: instruction, history, snippet."""

    def __init__(
        self,
        sessions: SessionStore,
        conversation_log: ConversationLog,
        knowledge: KnowledgeRepository,
        retriever: KnowledgeRetriever,
    ) -> None:
        self._sessions = sessions
        self._log = conversation_log
        self._knowledge = knowledge
        self._retriever = retriever

    async def build(
        self,
        user_input: str,
        session_id: str,
        language: str,
        intent_state: IntentState,
        *,
        grounding_context: str | None = None,
    ) -> PromptInputs:
        """Assemble the inputs, retrieving a snippet unless one is supplied."""
        session = await self._sessions.load(session_id)
        policy = await self._knowledge.policy()
        snippet = grounding_context
        if snippet is None:
            corpus = await self._knowledge.corpus()
            snippet = await self._retriever.retrieve(user_input, corpus)
        system_instruction = assemble_system_prompt(
            policy,
            conversation_state=session.conversation_state,
            language=language,
            intent_state=intent_state,
        )
        history = await self._log.history(session_id, current_text=user_input)
        return PromptInputs(system_instruction, history, snippet)


# ── Normalization ────────────────────────────────────────────────────


def _tool_call_parts(raw: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Extract ``(function name, arguments)`` from any supported shape."""
    name = raw.get("functionName") or raw.get("function_name")
    params = raw.get("parameters")
    for key in ("function_call", "functionCall", "function"):
        call = raw.get(key)
        if isinstance(call, dict):
            name = name or call.get("name")
            params = params or call.get("parameters") or call.get("arguments") or call.get("args")
        elif isinstance(call, str) and call:
            name = name or call
    if params is None:
        params = raw.get("args") or raw.get("arguments")
    return (str(name) if name else None), (params if isinstance(params, dict) else {})


def normalize_decision(
    raw: dict[str, Any] | None,
    grounding_context: str | None = None,
) -> Decision | None:
    """Map a parsed oracle object onto a :data:`Decision`, or ``None`` if unusable.

    A missing ``nextState`` stays ``None`` so the caller can tell "not
    declared" apart from "declared the current state".
    """
    if not raw:
        return None
    action = str(raw.get("action") or "").strip().upper()
    name, params = _tool_call_parts(raw)
    if not action and name:
        action = "CALL_FUNCTION"

    next_state = IntentState.parse(raw["nextState"]) if raw.get("nextState") else None

    if action == "CALL_FUNCTION":
        if not name:
            return None
        return CallFunction(
            function_name=name,
            parameters=params,
            next_state=next_state,
            grounding_context=grounding_context,
        )
    if action == "ANSWER":
        response = raw.get("response")
        return Answer(
            response=response if isinstance(response, str) else "",
            next_state=next_state,
            grounding_context=grounding_context,
        )
    return None


# ── Oracle adapter ───────────────────────────────────────────────────


class DecisionMaker:
    def __init__(self, llm: LLMClient, context: PromptContextBuilder) -> None:
        self._llm = llm
        self._context = context

    async def decide(
        self,
        user_input: str,
        session_id: str,
        language: str,
        intent_state: IntentState,
    ) -> Decision:
        try:
            inputs = await self._context.build(user_input, session_id, language, intent_state)
            text = await self._llm.generate(
                inputs.system_instruction,
                inputs.history,
                DECISION_TURN_TEMPLATE.format(user_input=user_input, context=inputs.snippet or "N/A"),
                max_tokens=DECISION_MAX_TOKENS,
                temperature=DECISION_TEMPERATURE,
                operation="decide",
            )
        except Exception as exc:
            logger.error("[%s] Decision call failed: %s", session_id, exc, exc_info=True)
            return Answer(response=ai_error_message(language), next_state=intent_state, fallback=True)

        decision = normalize_decision(parse_json_object(text), inputs.snippet)
        if decision is None:
            logger.warning("[%s] No usable action in oracle output: %.200r", session_id, text)
            return Answer(
                response=rephrase_message(language),
                next_state=intent_state,
                grounding_context=inputs.snippet,
                fallback=True,
            )
        logger.info(
            "[%s] Decision: %s (next_state=%s)",
            session_id,
            decision.function_name if isinstance(decision, CallFunction) else "ANSWER",
            decision.next_state.value if decision.next_state else "-",
        )
        return decision
