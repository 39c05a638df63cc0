"""Tests for the response assembler."""

from __future__ import annotations

import json

from careconnect.language import ai_error_message, default_message
from careconnect.models import Answer, CallFunction, IntentState, ToolAction, ToolResult
from careconnect.responder import Responder, tool_payload

ANSWER = Answer(response="ignored", next_state=IntentState.IDLE, grounding_context="Open 10:00-19:00.")
BOOKED = ToolResult(
    True,
    ToolAction.BOOKING_CONFIRMED,
    data={"booking_details": {
        "user_id": "user-1",
        "customer_name": "김민지",
        "phone_number": "010-1234-5678",
        "selected_time": "2025-01-16T14:00:00",
        "service_type": "Consultation",
        "event_id": "evt-123",
    }},
)


class TestToolPayload:
    def test_booking_confirmation_is_preformatted(self):
        payload = tool_payload(BOOKED, "ko")
        assert payload["action"] == "booking_confirmed"
        assert payload["booking_details"]["event_id"] == "evt-123"
        assert payload["formatted_response"].startswith("김민지님의 예약이 완료되었습니다")
        assert "2025년 1월 16일 (목) 오후 2:00" in payload["formatted_response"]

    def test_other_results_are_passed_through(self):
        result = ToolResult(True, ToolAction.TIME_SLOT_UNAVAILABLE,
                            data={"is_available": False, "nearest_slot": None})
        assert tool_payload(result, "en") == result.to_payload()


class TestResponder:
    async def test_reply_uses_reused_snippet_without_tool(self, make_llm, context_builder):
        llm = make_llm("We are open from 10 to 7 on weekdays.")
        reply = await Responder(llm, context_builder).respond(
            "when are you open?", None, "en", ANSWER, IntentState.IDLE, "user-1",
        )
        assert reply == "We are open from 10 to 7 on weekdays."
        (call,) = llm.calls
        assert call["turn_text"] == "User Input: when are you open?\nReference: Open 10:00-19:00."
        assert call["max_tokens"] == 400
        assert call["operation"] == "respond"

    async def test_tool_result_is_serialized_into_the_turn(self, make_llm, context_builder):
        llm = make_llm("예약이 완료되었습니다.")
        decision = CallFunction("createFinalBooking", {}, IntentState.IDLE, grounding_context=None)
        await Responder(llm, context_builder).respond(
            "김민지 010-1234-5678", BOOKED, "ko", decision, IntentState.IDLE, "user-1",
        )
        turn_text = llm.calls[0]["turn_text"]
        assert "\nTool Result: " in turn_text
        payload = json.loads(turn_text.split("\nTool Result: ", 1)[1])
        assert payload["success"] is True
        assert "formatted_response" in payload

    async def test_intent_state_reaches_the_instruction(self, make_llm, context_builder):
        llm = make_llm("ok.")
        await Responder(llm, context_builder).respond(
            "x", None, "en", ANSWER, IntentState.AWAITING_INFO, "user-1",
        )
        assert "CurrentIntentState: AWAITING_INFO" in llm.calls[0]["system_instruction"]

    async def test_fallback_decision_skips_the_oracle(self, make_llm, context_builder):
        llm = make_llm("should not be used")
        fallback = Answer(response="Sorry, please rephrase.", next_state=IntentState.IDLE, fallback=True)
        reply = await Responder(llm, context_builder).respond(
            "???", None, "en", fallback, IntentState.IDLE, "user-1",
        )
        assert reply == "Sorry, please rephrase."
        assert llm.calls == []

    async def test_empty_output_uses_default_message(self, make_llm, context_builder):
        reply = await Responder(make_llm("   "), context_builder).respond(
            "x", None, "ja", ANSWER, IntentState.IDLE, "user-1",
        )
        assert reply == default_message("ja")

    async def test_oracle_failure_returns_localized_apology(self, make_llm, context_builder):
        reply = await Responder(make_llm(TimeoutError("slow")), context_builder).respond(
            "x", None, "th", ANSWER, IntentState.IDLE, "user-1",
        )
        assert reply == ai_error_message("th")

    async def test_long_reply_is_truncated_at_a_sentence(self, make_llm, context_builder):
        first = "가" * 150 + "드립니다. "
        long_reply = first + "나" * 200 + "입니다."
        reply = await Responder(make_llm(long_reply), context_builder).respond(
            "x", None, "ko", ANSWER, IntentState.IDLE, "user-1",
        )
        assert reply == first.rstrip()
