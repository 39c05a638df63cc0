"""Tests for the booking and handoff tools and their dispatcher."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from careconnect.models import Mode, ToolAction
from careconnect.services.storage import BOOKING_COOLDOWNS, BOOKINGS, SESSIONS, StorageError
from careconnect.tools.booking import create_final_booking, find_nearest_slot, start_booking_process
from careconnect.tools.executor import ToolExecutor
from careconnect.tools.handoff import request_human_agent

SEOUL = ZoneInfo("Asia/Seoul")


def _at(hour: int, minute: int = 0, day: int = 16) -> datetime:
    return datetime(2025, 1, day, hour, minute, tzinfo=SEOUL)


def _booking_args(**overrides):
    args = {
        "userId": "user-1",
        "userChatId": "chat-1",
        "customerName": "김민지",
        "phoneNumber": "010-1234-5678",
        "selectedTime": "2025-01-16T14:00:00",
    }
    args.update(overrides)
    return args


# ── startBookingProcess ──────────────────────────────────────────────


class TestStartBookingProcess:
    async def test_free_slot_is_available(self, fake_calendar):
        result = await start_booking_process({"dateTime": "2025-01-16T14:00:00"}, fake_calendar)
        assert result.success is True
        assert result.action is ToolAction.TIME_SLOT_AVAILABLE
        assert result.data == {"is_available": True, "confirmed_time": "2025-01-16T14:00:00"}
        fake_calendar.query_free_busy.assert_awaited_once()

    async def test_busy_slot_suggests_nearest(self, fake_calendar):
        fake_calendar.query_free_busy.return_value = [(_at(14), _at(15))]
        result = await start_booking_process({"dateTime": "2025-01-16T14:00:00"}, fake_calendar)
        assert result.action is ToolAction.TIME_SLOT_UNAVAILABLE
        assert result.data["is_available"] is False
        assert result.data["nearest_slot"] == "2025-01-16T15:00:00+09:00"

    async def test_outside_opening_hours_is_unavailable(self, fake_calendar):
        result = await start_booking_process({"dateTime": "2025-01-18T11:00:00"}, fake_calendar)
        assert result.action is ToolAction.TIME_SLOT_UNAVAILABLE
        assert result.data["nearest_slot"] is None

    async def test_natural_language_time_is_parsed(self, fake_calendar, utc_clock):
        result = await start_booking_process({"dateTime": "내일 2시"}, fake_calendar, reference=utc_clock())
        assert result.action is ToolAction.TIME_SLOT_AVAILABLE
        assert result.data["confirmed_time"] == "2025-01-16T14:00:00"

    @pytest.mark.parametrize(
        "arguments, action",
        [
            ({}, ToolAction.INVALID_DATETIME_FORMAT),
            ({"dateTime": "undefined"}, ToolAction.INVALID_DATETIME_FORMAT),
            ({"dateTime": "내일"}, ToolAction.NATURAL_LANGUAGE_PARSE_FAILED),
            ({"dateTime": "next friday afternoon"}, ToolAction.INVALID_ISO_FORMAT),
        ],
    )
    async def test_bad_input_never_reaches_the_calendar(self, fake_calendar, arguments, action):
        result = await start_booking_process(arguments, fake_calendar)
        assert result.success is False
        assert result.action is action
        fake_calendar.query_free_busy.assert_not_awaited()

    async def test_calendar_error_is_a_system_error(self, fake_calendar):
        fake_calendar.query_free_busy.side_effect = RuntimeError("calendar down")
        result = await start_booking_process({"dateTime": "2025-01-16T14:00:00"}, fake_calendar)
        assert result.action is ToolAction.SYSTEM_ERROR


class TestFindNearestSlot:
    def test_skips_busy_and_closed_times(self):
        busy = [(_at(17), _at(18, 30))]
        assert find_nearest_slot(_at(16, 30), busy) == _at(18, 30)

    def test_none_within_horizon(self):
        assert find_nearest_slot(_at(18, 30), []) is None


# ── createFinalBooking ───────────────────────────────────────────────


class TestCreateFinalBooking:
    async def test_wrong_phone_format_fails_without_calendar_call(self, fake_calendar, store):
        result = await create_final_booking(_booking_args(phoneNumber="555-1234"), fake_calendar, store)
        assert result.success is False
        assert result.action is ToolAction.VALIDATION_FAILED
        assert result.data["field"] == "phoneNumber"
        fake_calendar.insert_event.assert_not_awaited()

    @pytest.mark.parametrize(
        "overrides",
        [{"customerName": "K"}, {"selectedTime": "내일 2시"}, {"userId": ""}],
    )
    async def test_other_validation_failures(self, fake_calendar, store, overrides):
        result = await create_final_booking(_booking_args(**overrides), fake_calendar, store)
        assert result.action is ToolAction.VALIDATION_FAILED
        fake_calendar.insert_event.assert_not_awaited()

    async def test_valid_booking_is_confirmed(self, fake_calendar, store):
        result = await create_final_booking(_booking_args(), fake_calendar, store)

        assert result.success is True
        assert result.action is ToolAction.BOOKING_CONFIRMED
        assert result.data["booking_details"]["event_id"] == "evt-123"
        assert result.data["record_saved"] is True
        fake_calendar.insert_event.assert_awaited_once()
        event = fake_calendar.insert_event.call_args.args[0]
        assert event.start == _at(14)
        assert event.service_type == "Consultation"

        row = await store.get(BOOKINGS, "evt-123")
        assert row["status"] == "confirmed"
        assert row["phone_number"] == "010-1234-5678"

    async def test_missing_event_id(self, fake_calendar, store):
        fake_calendar.insert_event.return_value = None
        result = await create_final_booking(_booking_args(), fake_calendar, store)
        assert result.action is ToolAction.CALENDAR_BOOKING_FAILED

    async def test_calendar_error(self, fake_calendar, store):
        fake_calendar.insert_event.side_effect = RuntimeError("quota")
        result = await create_final_booking(_booking_args(), fake_calendar, store)
        assert result.action is ToolAction.SYSTEM_ERROR

    async def test_booking_row_failure_still_confirms(self, fake_calendar):
        broken = AsyncMock()
        broken.add.side_effect = StorageError("down")
        result = await create_final_booking(_booking_args(), fake_calendar, broken)
        assert result.action is ToolAction.BOOKING_CONFIRMED
        assert result.data["record_saved"] is False
        assert result.data["booking_details"]["event_id"] == "evt-123"


# ── requestHumanAgent ────────────────────────────────────────────────


class TestRequestHumanAgent:
    async def test_rate_limited_until_threshold(self, sessions, store):
        args = {"userId": "user-1", "reason": "user_request"}
        for expected in (1, 2):
            result = await request_human_agent(args, sessions, threshold=3)
            assert result.action is ToolAction.RATE_LIMITED
            assert result.data == {"request_count": expected}

        result = await request_human_agent(args, sessions, threshold=3)
        assert result.success is True
        assert result.action is ToolAction.HUMAN_AGENT_REQUESTED
        doc = await store.get(SESSIONS, "user-1")
        assert doc["mode"] == Mode.HUMAN_MODE.value
        assert doc["handoff_reason"] == "user_request"
        assert doc["human_request_count"] == 0

    async def test_missing_user_id(self, sessions):
        result = await request_human_agent({}, sessions)
        assert result.action is ToolAction.VALIDATION_FAILED


# ── Executor ─────────────────────────────────────────────────────────


@pytest.fixture
def executor(fake_calendar, store, sessions, utc_clock):
    return ToolExecutor(fake_calendar, store, sessions, clock=utc_clock)


class TestToolExecutor:
    async def test_unknown_function(self, executor):
        result = await executor.execute("cancelBooking", {}, user_id="user-1", user_chat_id="chat-1")
        assert result.action is ToolAction.UNKNOWN_FUNCTION

    async def test_available_slot_updates_booking_state(self, executor, sessions):
        await executor.execute("startBookingProcess", {"dateTime": "내일 2시"},
                               user_id="user-1", user_chat_id="chat-1")
        state = (await sessions.load("user-1")).booking_state
        assert state.step == "awaiting_info"
        assert state.proposed_time == "2025-01-16T14:00:00"

    async def test_confirmed_booking_records_state_and_cooldown(self, executor, sessions, store, utc_clock):
        args = {k: v for k, v in _booking_args().items() if k not in ("userId", "userChatId")}
        result = await executor.execute("createFinalBooking", args, user_id="user-9", user_chat_id="chat-9")

        assert result.data["booking_details"]["user_id"] == "user-9"
        state = (await sessions.load("user-9")).booking_state
        assert state.step == "confirmed"
        assert state.customer_name == "김민지"
        cooldown = await store.get(BOOKING_COOLDOWNS, "user-9")
        assert cooldown["event_id"] == "evt-123"
        assert cooldown["last_booking_at"] == utc_clock.now.isoformat()

    async def test_system_fields_cannot_be_overridden(self, executor, fake_calendar, store):
        args = {**_booking_args(), "userId": "someone-else"}
        result = await executor.execute("createFinalBooking", args, user_id="user-1", user_chat_id="chat-1")
        assert result.data["booking_details"]["user_id"] == "user-1"

    async def test_handler_crash_becomes_system_error(self, executor):
        executor._handlers["startBookingProcess"] = AsyncMock(side_effect=KeyError("boom"))
        result = await executor.execute("startBookingProcess", {}, user_id="user-1", user_chat_id="chat-1")
        assert result.action is ToolAction.SYSTEM_ERROR

    def test_tool_names(self, executor):
        assert executor.tool_names == ["startBookingProcess", "createFinalBooking", "requestHumanAgent"]
