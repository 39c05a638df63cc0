"""Dispatch of oracle tool calls by wire name.

The executor injects the caller's ``userId`` / ``userChatId`` into the
arguments, runs the tool, and records the session-side effects of a
successful booking step (``booking_state`` and the cooldown row).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from careconnect.models import ToolAction, ToolResult, utcnow
from careconnect.services.calendar_client import CalendarClient
from careconnect.services.storage import BOOKING_COOLDOWNS, DocumentStore
from careconnect.session import SessionStore
from careconnect.tools.booking import create_final_booking, start_booking_process
from careconnect.tools.handoff import request_human_agent

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


class ToolExecutor:
    def __init__(
        self,
        calendar: CalendarClient,
        store: DocumentStore,
        sessions: SessionStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._calendar = calendar
        self._store = store
        self._sessions = sessions
        self._clock = clock
        self._handlers: dict[str, ToolHandler] = {
            "startBookingProcess": self._start_booking,
            "createFinalBooking": self._create_booking,
            "requestHumanAgent": self._request_human,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def _start_booking(self, arguments: dict[str, Any]) -> ToolResult:
        return await start_booking_process(arguments, self._calendar, reference=self._clock())

    async def _create_booking(self, arguments: dict[str, Any]) -> ToolResult:
        return await create_final_booking(arguments, self._calendar, self._store)

    async def _request_human(self, arguments: dict[str, Any]) -> ToolResult:
        return await request_human_agent(arguments, self._sessions)

    async def execute(
        self,
        function_name: str,
        parameters: dict[str, Any],
        *,
        user_id: str,
        user_chat_id: str,
    ) -> ToolResult:
        """Run *function_name*.  Never raises."""
        handler = self._handlers.get(function_name)
        if handler is None:
            logger.warning("[%s] Unknown function requested: %s", user_id, function_name)
            return ToolResult(False, ToolAction.UNKNOWN_FUNCTION, f"Unknown function: {function_name}")

        arguments = {**(parameters or {}), "userId": user_id, "userChatId": user_chat_id}
        logger.info("[%s] Running tool %s", user_id, function_name)
        try:
            result = await handler(arguments)
        except Exception as exc:
            logger.error("[%s] Tool %s failed: %s", user_id, function_name, exc, exc_info=True)
            return ToolResult(False, ToolAction.SYSTEM_ERROR, str(exc))

        await self._record_side_effects(user_id, result)
        return result

    async def _record_side_effects(self, user_id: str, result: ToolResult) -> None:
        if result.action is ToolAction.TIME_SLOT_AVAILABLE:
            await self._sessions.update_booking_state(
                user_id, step="awaiting_info", proposed_time=result.data.get("confirmed_time"),
            )
        elif result.action is ToolAction.BOOKING_CONFIRMED:
            details = result.data.get("booking_details", {})
            await self._sessions.update_booking_state(
                user_id,
                step="confirmed",
                selected_time=details.get("selected_time"),
                customer_name=details.get("customer_name"),
            )
            try:
                await self._store.merge(
                    BOOKING_COOLDOWNS,
                    user_id,
                    {
                        "user_id": user_id,
                        "event_id": details.get("event_id"),
                        "last_booking_at": self._clock().isoformat(),
                    },
                )
            except Exception as exc:
                logger.warning("[%s] Cooldown write failed: %s", user_id, exc)
