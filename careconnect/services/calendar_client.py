"""Google Calendar v3 REST client (freebusy + events.insert).

Authentication uses either a static ``GOOGLE_ACCESS_TOKEN`` or the OAuth
refresh-token flow (``GOOGLE_CLIENT_ID`` / ``GOOGLE_CLIENT_SECRET`` /
``GOOGLE_REFRESH_TOKEN``).  Access tokens are cached until shortly
before expiry and refreshed once on a 401.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import quote

from careconnect.config import (
    APPOINTMENT_MINUTES,
    GOOGLE_ACCESS_TOKEN,
    GOOGLE_CALENDAR_BASE_URL,
    GOOGLE_CALENDAR_ID,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REFRESH_TOKEN,
    GOOGLE_TOKEN_URL,
    TIMEZONE,
)
from careconnect.services.http import ApiClient, ApiError

logger = logging.getLogger(__name__)

BusyInterval = tuple[datetime, datetime]


class CalendarNotConfiguredError(ApiError):
    """Raised when no usable Google credentials are configured."""


@dataclass
class EventDetails:
    customer_name: str
    phone_number: str
    start: datetime
    service_type: str = ""
    duration_minutes: int = APPOINTMENT_MINUTES

    def to_body(self, tz_name: str = TIMEZONE) -> dict[str, Any]:
        end = self.start + timedelta(minutes=self.duration_minutes)
        description = f"Contact: {self.phone_number}"
        if self.service_type:
            description += f"\nService: {self.service_type}"
        return {
            "summary": f"Consultation: {self.customer_name}",
            "description": description,
            "start": {"dateTime": self.start.isoformat(), "timeZone": tz_name},
            "end": {"dateTime": end.isoformat(), "timeZone": tz_name},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }


def _parse_google_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class CalendarClient(ApiClient):
    service_name = "google_calendar"

    def __init__(
        self,
        calendar_id: str | None = None,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        access_token: str | None = None,
        **kwargs,
    ):
        super().__init__(GOOGLE_CALENDAR_BASE_URL, **kwargs)
        self.calendar_id = calendar_id or GOOGLE_CALENDAR_ID
        self._client_id = client_id if client_id is not None else GOOGLE_CLIENT_ID
        self._client_secret = client_secret if client_secret is not None else GOOGLE_CLIENT_SECRET
        self._refresh_token = refresh_token if refresh_token is not None else GOOGLE_REFRESH_TOKEN
        self._cached_token = access_token if access_token is not None else GOOGLE_ACCESS_TOKEN
        self._token_expiry: datetime | None = None

    # ── Auth ─────────────────────────────────────────────────────────

    def _can_refresh(self) -> bool:
        return bool(self._client_id and self._client_secret and self._refresh_token)

    @property
    def configured(self) -> bool:
        return bool(self._cached_token) or self._can_refresh()

    async def _ensure_token(self, force_refresh: bool = False) -> str:
        now = datetime.now(UTC)
        if (
            not force_refresh
            and self._cached_token
            and (self._token_expiry is None or self._token_expiry > now + timedelta(seconds=30))
        ):
            return self._cached_token

        if not self._can_refresh():
            if self._cached_token:
                return self._cached_token
            raise CalendarNotConfiguredError("Google Calendar credentials not configured.")

        data = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            operation="token_refresh",
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._refresh_token,
                "grant_type": "refresh_token",
            },
        )
        token = data.get("access_token", "")
        if not token:
            raise ApiError("Token refresh failed: no access_token")
        expires_in = int(data.get("expires_in", 3600))
        self._cached_token = token
        self._token_expiry = now + timedelta(seconds=max(60, expires_in - 30))
        logger.debug("Google access token refreshed (expires in %ds)", expires_in)
        return token

    async def _authorized(self, method: str, path: str, *, operation: str,
                          json_body: dict[str, Any]) -> dict[str, Any]:
        token = await self._ensure_token()
        try:
            return await self._request(
                method, path, operation=operation, json_body=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except ApiError as exc:
            if exc.status_code != 401 or not self._can_refresh():
                raise
            token = await self._ensure_token(force_refresh=True)
            return await self._request(
                method, path, operation=operation, json_body=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )

    # ── Calendar operations ──────────────────────────────────────────

    async def query_free_busy(self, start: datetime, end: datetime) -> list[BusyInterval]:
        """Busy intervals on the clinic calendar overlapping ``[start, end)``."""
        body = await self._authorized(
            "POST",
            "/freeBusy",
            operation="freebusy",
            json_body={
                "timeMin": start.astimezone(UTC).isoformat(),
                "timeMax": end.astimezone(UTC).isoformat(),
                "items": [{"id": self.calendar_id}],
            },
        )
        calendar = body.get("calendars", {}).get(self.calendar_id, {})
        if calendar.get("errors"):
            raise ApiError(f"freebusy error for {self.calendar_id}: {calendar['errors']}")
        return [
            (_parse_google_time(b["start"]), _parse_google_time(b["end"]))
            for b in calendar.get("busy", [])
        ]

    async def insert_event(self, details: EventDetails) -> str | None:
        """Create the appointment and return the new event id (``None`` if absent)."""
        body = await self._authorized(
            "POST",
            f"/calendars/{quote(self.calendar_id, safe='')}/events",
            operation="events_insert",
            json_body=details.to_body(),
        )
        event_id = body.get("id")
        logger.info("Calendar event created: %s", event_id)
        return event_id
