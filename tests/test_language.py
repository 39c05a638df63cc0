"""Tests for language detection and localized texts."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from careconnect.language import (
    AI_ERROR_MESSAGES,
    ATTACHMENT_NOTICES,
    BOOKING_CONFIRMED_TEMPLATES,
    DEFAULT_MESSAGES,
    HUMAN_TIMEOUT_NOTICES,
    REPHRASE_MESSAGES,
    SUPPORTED_LANGUAGES,
    ai_error_message,
    attachment_notice,
    booking_confirmed_message,
    detect_language,
    ellipsis,
    format_datetime_by_language,
    human_timeout_notice,
    rephrase_message,
    sentence_enders,
)


class TestDetectLanguage:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("안녕하세요, 예약하고 싶어요", "ko"),
            ("สวัสดีครับ อยากจองคิว", "th"),
            ("こんにちは、予約したいです", "ja"),
            ("你好，我想预约", "zh"),
            ("Xin chào, tôi muốn đặt lịch", "vi"),
            ("Привет", "ru"),
            ("hola, quiero una cita", "es"),
            ("bonjour, je voudrais un rendez-vous", "fr"),
            ("Hi, how much is botox?", "en"),
        ],
    )
    def test_detects_by_script_and_keywords(self, text, expected):
        assert detect_language(text) == expected
        assert expected in SUPPORTED_LANGUAGES

    def test_empty_input_defaults_to_korean(self):
        assert detect_language("") == "ko"
        assert detect_language("   ") == "ko"
        assert detect_language(None) == "ko"

    def test_hangul_wins_in_mixed_text(self):
        assert detect_language("botox 가격 알려주세요") == "ko"


class TestLocalizedTexts:
    def test_supported_language_gets_its_own_text(self):
        assert ai_error_message("ko").startswith("죄송합니다")
        assert rephrase_message("ja").startswith("すみません")
        assert ai_error_message("zh") == "抱歉，AI系统出现临时错误，请稍后再试。"

    @pytest.mark.parametrize(
        "table",
        [
            AI_ERROR_MESSAGES,
            REPHRASE_MESSAGES,
            DEFAULT_MESSAGES,
            HUMAN_TIMEOUT_NOTICES,
            ATTACHMENT_NOTICES["image"],
            ATTACHMENT_NOTICES["file"],
            BOOKING_CONFIRMED_TEMPLATES,
        ],
    )
    def test_every_detected_language_has_its_own_entry(self, table):
        assert set(SUPPORTED_LANGUAGES) <= set(table)
        for language in SUPPORTED_LANGUAGES:
            if language != "en":
                assert table[language] != table["en"], language

    @pytest.mark.parametrize("language", SUPPORTED_LANGUAGES)
    def test_apology_uses_the_detected_language(self, language):
        assert ai_error_message(language) == AI_ERROR_MESSAGES[language]
        assert human_timeout_notice(language) == HUMAN_TIMEOUT_NOTICES[language]

    def test_unknown_language_falls_back_to_english(self):
        assert ai_error_message("xx") == ai_error_message("en")
        assert rephrase_message("") == rephrase_message("en")

    def test_attachment_notice_by_kind(self):
        assert "photo" in attachment_notice("image", "en")
        assert "file" in attachment_notice("file", "en")

    def test_booking_confirmed_message(self):
        message = booking_confirmed_message("김민지", "2025년 1월 16일 (목) 오후 2:00", "ko")
        assert message.startswith("김민지님의 예약이 완료되었습니다")
        assert "오후 2:00" in message

    def test_sentence_enders_fall_back_to_english(self):
        assert sentence_enders("de") == sentence_enders("en")
        assert "습니다." in sentence_enders("ko")
        assert ellipsis("ko") == "..."


class TestFormatDatetime:
    def test_korean_rendering_in_seoul_time(self):
        assert format_datetime_by_language("2025-01-16T05:00:00Z", "ko") == (
            "2025년 1월 16일 (목) 오후 2:00"
        )

    def test_english_rendering(self):
        assert format_datetime_by_language("2025-01-16T05:00:00Z", "en") == (
            "Thursday, January 16, 2025 2:00 PM"
        )

    def test_thai_uses_buddhist_era(self):
        assert format_datetime_by_language("2025-01-16T05:00:00Z", "th") == (
            "วันพฤหัสบดีที่ 16 มกราคม 2568 14:00 น."
        )

    def test_european_numeric_format(self):
        assert format_datetime_by_language("2025-01-16T05:00:00Z", "es") == "16/01/2025 14:00"

    def test_naive_time_is_read_as_clinic_local(self):
        assert format_datetime_by_language("2025-01-16T14:00:00", "ja") == "2025年1月16日(木) 14:00"

    def test_accepts_datetime_objects(self):
        moment = datetime(2025, 1, 16, 5, 0, tzinfo=UTC)
        assert format_datetime_by_language(moment, "zh") == "2025年1月16日 星期四 14:00"

    def test_unparseable_value_is_returned_unchanged(self):
        assert format_datetime_by_language("tomorrow 2pm", "en") == "tomorrow 2pm"
