"""Booking tools: availability check and final booking creation.

Both return a :class:`~careconnect.models.ToolResult` and never raise.
They do not send messages; the reply is written by the responder from
the result.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from careconnect.config import APPOINTMENT_MINUTES, SLOT_SEARCH_HOURS
from careconnect.models import ToolAction, ToolResult, utcnow
from careconnect.services.calendar_client import BusyInterval, CalendarClient, EventDetails
from careconnect.services.storage import BOOKINGS, DocumentStore
from careconnect.timeutils import (
    is_valid_iso8601,
    looks_natural,
    overlaps,
    parse_iso,
    parse_natural_time,
    slot_within_business_hours,
)
from careconnect.tools.schemas import FinalBooking, StartBookingArgs

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 30


def find_nearest_slot(
    requested: datetime,
    busy: list[BusyInterval],
    *,
    horizon_hours: int = SLOT_SEARCH_HOURS,
    step_minutes: int = SLOT_STEP_MINUTES,
    duration_minutes: int = APPOINTMENT_MINUTES,
) -> datetime | None:
    """First free in-hours slot after *requested*, stepping up to *horizon_hours* ahead."""
    duration = timedelta(minutes=duration_minutes)
    horizon = requested + timedelta(hours=horizon_hours)
    candidate = requested + timedelta(minutes=step_minutes)
    while candidate <= horizon:
        if slot_within_business_hours(candidate, duration_minutes) and not overlaps(
            candidate, candidate + duration, busy,
        ):
            return candidate
        candidate += timedelta(minutes=step_minutes)
    return None


async def start_booking_process(
    arguments: dict[str, Any],
    calendar: CalendarClient,
    *,
    reference: datetime | None = None,
) -> ToolResult:
    """Check whether the requested time is free, suggesting the nearest slot if not."""
    try:
        date_time = StartBookingArgs.model_validate(arguments).date_time
    except ValidationError:
        date_time = None
    if not date_time or date_time == "undefined":
        return ToolResult(False, ToolAction.INVALID_DATETIME_FORMAT,
                          "A specific time is needed, e.g. 'tomorrow 2pm'.")

    if looks_natural(date_time):
        parsed = parse_natural_time(date_time, reference)
        if parsed is None:
            return ToolResult(False, ToolAction.NATURAL_LANGUAGE_PARSE_FAILED,
                              "Could not understand the requested time.")
        logger.info("Parsed natural time %r -> %s", date_time, parsed)
        date_time = parsed

    if not is_valid_iso8601(date_time):
        return ToolResult(False, ToolAction.INVALID_ISO_FORMAT,
                          "An ISO 8601 time (YYYY-MM-DDTHH:MM:SS) is required.")

    try:
        start = parse_iso(date_time)
        end = start + timedelta(minutes=APPOINTMENT_MINUTES)
        busy = await calendar.query_free_busy(start, end + timedelta(hours=SLOT_SEARCH_HOURS))
    except Exception as exc:
        logger.error("Availability check failed for %s: %s", date_time, exc)
        return ToolResult(False, ToolAction.SYSTEM_ERROR, str(exc))

    if slot_within_business_hours(start, APPOINTMENT_MINUTES) and not overlaps(start, end, busy):
        logger.info("Slot %s is available", date_time)
        return ToolResult(True, ToolAction.TIME_SLOT_AVAILABLE,
                          data={"is_available": True, "confirmed_time": date_time})

    nearest = find_nearest_slot(start, busy)
    logger.info("Slot %s unavailable, nearest: %s", date_time, nearest)
    return ToolResult(
        True,
        ToolAction.TIME_SLOT_UNAVAILABLE,
        data={"is_available": False, "nearest_slot": nearest.isoformat() if nearest else None},
    )


def _first_validation_error(exc: ValidationError) -> tuple[str, str]:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or "input"
    return field, error.get("msg", "invalid input")


async def create_final_booking(
    arguments: dict[str, Any],
    calendar: CalendarClient,
    store: DocumentStore,
) -> ToolResult:
    """Validate, create the calendar event, then write the booking row keyed by event id.

    The calendar event is the booking of record.  If the row write fails
    afterwards the booking is still confirmed and ``record_saved`` is
    ``False`` so the gap is visible in the result and the logs.
    """
    try:
        booking = FinalBooking.model_validate(arguments)
    except ValidationError as exc:
        field, message = _first_validation_error(exc)
        logger.warning("Booking validation failed on %s: %s", field, message)
        return ToolResult(False, ToolAction.VALIDATION_FAILED, message, data={"field": field})

    try:
        event_id = await calendar.insert_event(
            EventDetails(
                customer_name=booking.customer_name,
                phone_number=booking.phone_number,
                start=parse_iso(booking.selected_time),
                service_type=booking.service_type,
            )
        )
    except Exception as exc:
        logger.error("Calendar insert failed for %s: %s", booking.user_id, exc)
        return ToolResult(False, ToolAction.SYSTEM_ERROR, str(exc))

    if not event_id:
        return ToolResult(False, ToolAction.CALENDAR_BOOKING_FAILED, "The calendar did not return an event id.")

    details = {
        "user_id": booking.user_id,
        "customer_name": booking.customer_name,
        "phone_number": booking.phone_number,
        "selected_time": booking.selected_time,
        "service_type": booking.service_type,
        "event_id": event_id,
    }
    record_saved = True
    try:
        await store.add(
            BOOKINGS,
            {
                **details,
                "user_chat_id": booking.user_chat_id,
                "status": "confirmed",
                "source": "chatbot",
                "created_at": utcnow().isoformat(),
            },
            doc_id=event_id,
        )
    except Exception as exc:
        record_saved = False
        logger.error("Booking row write failed for event %s: %s", event_id, exc)

    logger.info("Booking confirmed for %s at %s (event %s)",
                booking.user_id, booking.selected_time, event_id)
    return ToolResult(
        True, ToolAction.BOOKING_CONFIRMED, data={"booking_details": details, "record_saved": record_saved},
    )
