"""Tests for near-JSON recovery of oracle output."""

from __future__ import annotations

from careconnect.json_repair import (
    drop_trailing_commas,
    extract_object_span,
    insert_missing_commas,
    parse_json_object,
    quote_bare_keys,
    strip_code_fences,
)


class TestRepairSteps:
    def test_strip_code_fences(self):
        text = '```json\n{"action": "ANSWER"}\n```'
        assert strip_code_fences(text) == '{"action": "ANSWER"}'

    def test_strip_code_fences_leaves_plain_text(self):
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_extract_object_span_drops_prose(self):
        text = 'Sure! Here it is: {"action": "ANSWER"} Hope that helps.'
        assert extract_object_span(text) == '{"action": "ANSWER"}'

    def test_insert_missing_commas(self):
        text = '{"action": "ANSWER" "response": "hi"}'
        assert insert_missing_commas(text) == '{"action": "ANSWER", "response": "hi"}'

    def test_insert_missing_commas_across_lines(self):
        text = '{\n  "a": 1\n  "b": true\n}'
        assert insert_missing_commas(text) == '{\n  "a": 1,\n  "b": true\n}'

    def test_quote_bare_keys(self):
        assert quote_bare_keys('{action: "ANSWER", nextState: "IDLE"}') == (
            '{"action": "ANSWER", "nextState": "IDLE"}'
        )

    def test_drop_trailing_commas(self):
        assert drop_trailing_commas('{"a": [1, 2,], "b": 3,}') == '{"a": [1, 2], "b": 3}'


class TestParseJsonObject:
    def test_valid_json_is_parsed_directly(self):
        assert parse_json_object('{"action": "ANSWER", "response": "hi"}') == {
            "action": "ANSWER", "response": "hi",
        }

    def test_fenced_json_with_trailing_comma(self):
        text = '```json\n{"action": "CALL_FUNCTION", "functionName": "startBookingProcess",}\n```'
        assert parse_json_object(text) == {
            "action": "CALL_FUNCTION", "functionName": "startBookingProcess",
        }

    def test_prose_wrapped_json_with_bare_keys(self):
        text = 'Decision: {action: "ANSWER", response: "안녕하세요"} done'
        assert parse_json_object(text) == {"action": "ANSWER", "response": "안녕하세요"}

    def test_plain_prose_returns_none(self):
        assert parse_json_object("I think you should book tomorrow.") is None

    def test_non_object_json_returns_none(self):
        assert parse_json_object("[1, 2, 3]") is None

    def test_empty_input_returns_none(self):
        assert parse_json_object("") is None
        assert parse_json_object("   ") is None
        assert parse_json_object(None) is None
