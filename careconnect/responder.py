"""Response assembler: the second oracle call of a turn, plus length bounding.

The reply is generated from the same system instruction and history as
the decision, the reused grounding snippet and the serialized tool
result, then cut to ``RESPONSE_CHAR_LIMIT`` characters at the last
complete sentence (see :func:`truncate_response`).
"""

from __future__ import annotations

import json
import logging
import uuid

from careconnect.config import RESPONSE_CHAR_LIMIT, RESPONSE_MIN_CHARS
from careconnect.decision import PromptContextBuilder
from careconnect.language import (
    ai_error_message,
    booking_confirmed_message,
    default_message,
    ellipsis,
    format_datetime_by_language,
    sentence_enders,
)
from careconnect.models import Answer, Decision, IntentState, ToolAction, ToolResult
from careconnect.services.llm import LLMClient

logger = logging.getLogger(__name__)

RESPONSE_MAX_TOKENS = 400
RESPONSE_TEMPERATURE = 0.7


def truncate_response(
    text: str,
    language: str,
    limit: int = RESPONSE_CHAR_LIMIT,
    min_floor: int = RESPONSE_MIN_CHARS,
) -> str:
    """Bound *text* to *limit* characters, ending on a sentence when possible.

    Every sentence ender for *language* is searched for its last
    occurrence starting at or before *limit*; occurrences starting before
    *min_floor* are ignored.  The furthest cut (end of the ender) wins.
    With no usable boundary the text is hard-cut and an ellipsis added.
    """
    if len(text) <= limit:
        return text

    best_cut = -1
    for ender in sentence_enders(language):
        idx = text.rfind(ender, 0, limit + len(ender))
        if idx >= min_floor:
            best_cut = max(best_cut, idx + len(ender))

    if best_cut > 0:
        logger.debug("Truncated reply %d → %d chars at sentence end", len(text), best_cut)
        return text[:best_cut]

    marker = ellipsis(language)
    logger.debug("Hard-truncated reply %d → %d chars", len(text), limit)
    return text[: limit - len(marker)] + marker


def tool_payload(tool_result: ToolResult, language: str) -> dict:
    """Tool result as shown to the oracle, with a ready-made confirmation if booked."""
    payload = tool_result.to_payload()
    details = tool_result.data.get("booking_details") or {}
    if tool_result.action is ToolAction.BOOKING_CONFIRMED and details.get("selected_time"):
        formatted_time = format_datetime_by_language(details["selected_time"], language)
        payload["formatted_response"] = booking_confirmed_message(
            details.get("customer_name", ""), formatted_time, language,
        )
    return payload


class Responder:
    def __init__(self, llm: LLMClient, context: PromptContextBuilder) -> None:
        self._llm = llm
        self._context = context

    async def respond(
        self,
        user_input: str,
        tool_result: ToolResult | None,
        language: str,
        decision: Decision,
        intent_state: IntentState,
        session_id: str,
    ) -> str:
        """Produce the user-facing reply for this turn.  Never raises."""
        if isinstance(decision, Answer) and decision.fallback:
            return truncate_response(decision.response, language)

        try:
            inputs = await self._context.build(
                user_input, session_id, language, intent_state,
                grounding_context=decision.grounding_context,
            )
            turn_text = f"User Input: {user_input}\nReference: {inputs.snippet or 'N/A'}"
            if tool_result is not None:
                turn_text += "\nTool Result: " + json.dumps(
                    tool_payload(tool_result, language), ensure_ascii=False, indent=2, default=str,
                )
            text = await self._llm.generate(
                inputs.system_instruction,
                inputs.history,
                turn_text,
                max_tokens=RESPONSE_MAX_TOKENS,
                temperature=RESPONSE_TEMPERATURE,
                operation="respond",
            )
        except Exception as exc:
            error_id = uuid.uuid4().hex[:8]
            logger.error("[%s] Response generation failed (error_id=%s): %s",
                         session_id, error_id, exc, exc_info=True)
            return ai_error_message(language)

        reply = text.strip() or default_message(language)
        return truncate_response(reply, language)
