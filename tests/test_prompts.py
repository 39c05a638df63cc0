"""Tests for system-instruction assembly."""

from __future__ import annotations

from datetime import UTC, datetime

from careconnect.models import ConversationState, IntentState
from careconnect.prompts import (
    assemble_system_prompt,
    language_rules,
    technical_instructions,
    tool_declarations,
)

# 2025-01-15 23:30 in Seoul, so "today" differs from the UTC date
LATE_EVENING = datetime(2025, 1, 15, 14, 30, tzinfo=UTC)


class TestToolDeclarations:
    def test_every_tool_is_declared(self):
        text = tool_declarations()
        for name in ("startBookingProcess", "createFinalBooking", "requestHumanAgent"):
            assert f"- {name}:" in text

    def test_system_filled_fields_are_hidden(self):
        text = tool_declarations()
        assert "userId" not in text
        assert "userChatId" not in text

    def test_final_booking_requirements(self):
        line = next(
            line for line in tool_declarations().splitlines()
            if line.strip().startswith("required") and "customerName" in line
        )
        assert '"customerName"' in line
        assert '"phoneNumber"' in line
        assert '"selectedTime"' in line
        assert "serviceType" not in line


class TestTechnicalInstructions:
    def test_dates_are_resolved_in_clinic_time_zone(self):
        text = technical_instructions(LATE_EVENING)
        assert "Asia/Seoul" in text
        assert "Today's date: 2025-01-15" in text
        assert "Tomorrow's date: 2025-01-16" in text
        assert '"2025-01-16T14:00:00"' in text

    def test_json_contract_is_stated(self):
        text = technical_instructions(LATE_EVENING)
        assert '"action": "ANSWER" | "CALL_FUNCTION"' in text
        assert "nextState" in text


class TestAssembleSystemPrompt:
    def test_includes_policy_tone_state_and_language(self):
        prompt = assemble_system_prompt(
            "  Be kind to patients.  ",
            conversation_state=ConversationState.CONSULTATION_READY,
            language="th",
            intent_state=IntentState.AWAITING_INFO,
            now=LATE_EVENING,
        )
        assert "\n\nBe kind to patients.\n\n" in prompt
        assert "CONSULTATION_READY" in prompt
        assert "CurrentIntentState: AWAITING_INFO\nLanguage: th" in prompt
        assert 'language with code "th"' in prompt
        assert prompt.index("MANDATORY OUTPUT RULES") < prompt.index("Be kind") < prompt.index("# LANGUAGE")

    def test_normal_tone_by_default(self):
        prompt = assemble_system_prompt("policy", now=LATE_EVENING)
        assert "Conversation tone: NORMAL" in prompt
        assert "CurrentIntentState: IDLE\nLanguage: ko" in prompt

    def test_language_rules_extras(self):
        assert "습니다" in language_rules("ko")
        assert "- " not in language_rules("en")
