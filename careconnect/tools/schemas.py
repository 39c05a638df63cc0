"""Argument schemas for the tools the decision oracle may call.

The models accept the camelCase names the oracle is told to use as well
as snake_case.  Their JSON schemas (by alias) are also what the system
prompt advertises, so the declared and the validated contracts cannot
drift apart.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from careconnect.config import DEFAULT_SERVICE_TYPE
from careconnect.timeutils import is_valid_iso8601

PHONE_PATTERN = re.compile(r"^010-\d{4}-\d{4}$")


class _ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class StartBookingArgs(_ToolArgs):
    """Check calendar availability for the requested time."""

    date_time: str | None = Field(
        default=None,
        alias="dateTime",
        description=(
            "Requested date and time resolved against today's date, as a single "
            "ISO 8601 value, e.g. '2025-01-15T14:00:00+09:00'."
        ),
    )


class FinalBooking(_ToolArgs):
    """Create the calendar appointment and store the booking."""

    user_id: str = Field(alias="userId", min_length=1, description="User id (filled in by the system).")
    user_chat_id: str = Field(alias="userChatId", min_length=1,
                              description="Chat id (filled in by the system).")
    customer_name: str = Field(
        alias="customerName",
        min_length=2,
        description="The customer's full name, extracted from what they wrote.",
    )
    phone_number: str = Field(
        alias="phoneNumber",
        description="Phone number normalized to the '010-XXXX-YYYY' format.",
    )
    selected_time: str = Field(
        alias="selectedTime",
        description="Chosen time as ISO 8601 in clinic local time, e.g. '2025-01-15T14:00:00+09:00'.",
    )
    service_type: str = Field(default=DEFAULT_SERVICE_TYPE, alias="serviceType",
                              description="The service being booked.")

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        if not PHONE_PATTERN.match(value):
            raise ValueError("phone number must use the 010-XXXX-YYYY format")
        return value

    @field_validator("selected_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not is_valid_iso8601(value):
            raise ValueError("selected time must be a valid ISO 8601 date-time")
        return value


class HumanAgentRequest(_ToolArgs):
    """Ask for a human operator to take over the conversation."""

    user_id: str = Field(alias="userId", min_length=1, description="User id (filled in by the system).")
    reason: str = Field(
        default="",
        description="One of user_request, complex_consultation, knowledge_gap, technical_issue.",
    )
    context: str = Field(default="", description="Short summary of the conversation for the operator.")


TOOL_SCHEMAS: dict[str, type[_ToolArgs]] = {
    "startBookingProcess": StartBookingArgs,
    "createFinalBooking": FinalBooking,
    "requestHumanAgent": HumanAgentRequest,
}

# Arguments the orchestrator injects; never asked of the oracle.
SYSTEM_FILLED_FIELDS = frozenset({"userId", "userChatId"})
