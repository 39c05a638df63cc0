"""System instruction for the CareConnect decision and response calls.

The instruction is assembled per turn from four parts:

1. **Technical rules**: the strict JSON contract, the tool declarations
   and the date conversion guide (today/tomorrow in the clinic's zone).
2. **Behavioural policy**: curated text loaded from storage
   (:mod:`careconnect.knowledge`), with a built-in default.
3. **Conversation tone**: NORMAL vs CONSULTATION_READY.
4. **Language rules** plus the current intent state.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta

from careconnect.models import ConversationState, IntentState
from careconnect.timeutils import business_tz
from careconnect.tools.schemas import SYSTEM_FILLED_FIELDS, TOOL_SCHEMAS

TECHNICAL_INSTRUCTIONS_TEMPLATE = """# MANDATORY OUTPUT RULES (override everything else)

[RULE 1] Reply with exactly ONE JSON object and nothing else:
{{"action": "ANSWER" | "CALL_FUNCTION", "response": "<text for ANSWER>", \
"functionName": "<tool for CALL_FUNCTION>", "parameters": {{...}}, "nextState": "IDLE" | "AWAITING_TIME" | "AWAITING_INFO"}}
[RULE 2] Only call the tools declared below and never invent parameter names.
[RULE 3] Resolve dates against today's date. dateTime and selectedTime MUST be ISO 8601 \
(YYYY-MM-DDTHH:MM:SS), never natural language.

## Date conversion guide ({timezone})
Today's date: {today}
Tomorrow's date: {tomorrow}
- "내일 2시" → "{tomorrow}T14:00:00"
- "오후 3시" → "{today}T15:00:00"
- "tomorrow 2pm" → "{tomorrow}T14:00:00"

## Tools
{tools}

## Booking flow
1. The user names a time or asks to book → CALL_FUNCTION startBookingProcess (nextState "AWAITING_INFO").
2. Time confirmed but name/phone missing → ANSWER asking for them (nextState "AWAITING_INFO").
3. Name and phone known → CALL_FUNCTION createFinalBooking with selectedTime taken from the
   conversation (nextState "IDLE"). Normalize Korean phone numbers to 010-XXXX-XXXX.
4. Only call requestHumanAgent when the user explicitly asks for a person."""

TONE_RULES = {
    ConversationState.NORMAL: (
        "# Conversation tone: NORMAL\n"
        "Answer questions accurately and briefly. Do not push for a booking."
    ),
    ConversationState.CONSULTATION_READY: (
        "# Conversation tone: CONSULTATION_READY\n"
        "The user has been engaged for several turns. After answering, it is appropriate to "
        "suggest booking a consultation and to offer to check a time for them."
    ),
}

LANGUAGE_RULES_TEMPLATE = """# LANGUAGE (absolute requirement)
You MUST respond ONLY in the language with code "{language}". Do not mix in other languages.{extra}
Keep every reply under 250 characters and finish on a complete sentence."""

_LANGUAGE_EXTRAS = {
    "ko": "\n- Keep polite Korean endings (습니다/입니다).",
    "th": "\n- Thai only, keep polite particles (ค่ะ/ครับ).",
    "ja": "\n- Keep polite Japanese (です/ます).",
}


def tool_declarations() -> str:
    """Render every tool as name, description and JSON parameter schema."""
    blocks = []
    for name, schema in TOOL_SCHEMAS.items():
        spec = schema.model_json_schema(by_alias=True)
        properties = {
            key: {k: v for k, v in prop.items() if k in ("type", "description", "anyOf", "default")}
            for key, prop in spec.get("properties", {}).items()
            if key not in SYSTEM_FILLED_FIELDS
        }
        required = [key for key in spec.get("required", []) if key not in SYSTEM_FILLED_FIELDS]
        blocks.append(
            f"- {name}: {spec.get('description', '').strip()}\n"
            f"  parameters: {json.dumps(properties, ensure_ascii=False)}\n"
            f"  required: {json.dumps(required)}"
        )
    return "\n".join(blocks)


def technical_instructions(now: datetime | None = None) -> str:
    zone = business_tz()
    local = (now or datetime.now(zone)).astimezone(zone)
    return TECHNICAL_INSTRUCTIONS_TEMPLATE.format(
        timezone=zone.key,
        today=local.date().isoformat(),
        tomorrow=(local + timedelta(days=1)).date().isoformat(),
        tools=tool_declarations(),
    )


def language_rules(language: str) -> str:
    return LANGUAGE_RULES_TEMPLATE.format(
        language=language, extra=_LANGUAGE_EXTRAS.get(language, ""),
    )


def assemble_system_prompt(
    policy: str,
    *,
    conversation_state: ConversationState = ConversationState.NORMAL,
    language: str = "ko",
    intent_state: IntentState = IntentState.IDLE,
    now: datetime | None = None,
) -> str:
    """Build the full system instruction for one oracle call."""
    return "\n\n".join(
        (
            technical_instructions(now),
            policy.strip(),
            TONE_RULES[conversation_state],
            f"CurrentIntentState: {intent_state.value}\nLanguage: {language}",
            language_rules(language),
        )
    )
