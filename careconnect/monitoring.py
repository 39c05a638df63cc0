"""Operational snapshot for ``GET /api/status``.

Lists users currently held in HUMAN_MODE (flagging those past the
timeout, which flip back on their next message), bookings that were
started but not confirmed, and how many users have a booking cooldown.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from careconnect.api.schemas import HumanModeUser, PendingBooking, StatusResponse
from careconnect.config import HUMAN_MODE_TIMEOUT_MINUTES
from careconnect.models import Mode, Session, utcnow
from careconnect.services.storage import BOOKING_COOLDOWNS, SESSIONS, DocumentStore

logger = logging.getLogger(__name__)


def _minutes_since(moment: datetime | None, now: datetime) -> int | None:
    if moment is None:
        return None
    return int((now - moment) / timedelta(minutes=1))


async def build_status(
    store: DocumentStore,
    *,
    now: datetime | None = None,
    timeout_minutes: int = HUMAN_MODE_TIMEOUT_MINUTES,
) -> StatusResponse:
    now = now or utcnow()
    human_mode: list[HumanModeUser] = []
    pending: list[PendingBooking] = []

    for doc in await store.scan(SESSIONS):
        session = Session.from_document(doc.get("id", ""), doc)
        minutes = _minutes_since(session.last_updated_at, now)
        if session.mode is Mode.HUMAN_MODE:
            human_mode.append(HumanModeUser(
                user_id=session.user_id,
                last_activity=session.last_updated_at.isoformat() if session.last_updated_at else None,
                minutes_ago=minutes,
                needs_timeout=minutes is not None and minutes > timeout_minutes,
            ))
        booking = session.booking_state
        if booking.step and booking.step != "confirmed":
            pending.append(PendingBooking(
                user_id=session.user_id,
                step=booking.step,
                selected_time=booking.selected_time or booking.proposed_time,
                minutes_ago=minutes,
            ))

    cooldowns = await store.scan(BOOKING_COOLDOWNS)
    logger.debug("Status: %d human-mode users, %d pending bookings", len(human_mode), len(pending))
    return StatusResponse(
        timestamp=now.isoformat(),
        human_mode_users=human_mode,
        human_mode_needing_timeout=sum(1 for u in human_mode if u.needs_timeout),
        pending_bookings=pending,
        cooldown_users=len(cooldowns),
    )
