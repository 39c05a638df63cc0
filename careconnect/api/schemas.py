"""Pydantic schemas for the ChannelTalk webhook and the HTTP endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

IMAGE_BLOCK_TYPES = frozenset({"image", "image_link"})
FILE_BLOCK_TYPES = frozenset({"file", "video", "audio"})


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Webhook payload ──────────────────────────────────────────────────


class MessageEntity(_Payload):
    """The message part of a ChannelTalk webhook event."""

    id: str | None = None
    person_type: str | None = Field(default=None, alias="personType")
    plain_text: str | None = Field(default=None, alias="plainText")
    blocks: list[dict[str, Any]] = Field(default_factory=list)
    files: list[dict[str, Any]] | None = None
    attachments: list[dict[str, Any]] | None = None
    log: dict[str, Any] | None = None
    external_message_id: str | None = Field(default=None, alias="externalMessageId")

    @property
    def text(self) -> str:
        return self.plain_text or ""

    def attachment_kind(self) -> str | None:
        """``"image"``, ``"file"`` or ``None`` when nothing is attached."""
        has_image = has_file = False
        for block in self.blocks:
            mime = str((block.get("file") or {}).get("mime") or "")
            if block.get("type") in IMAGE_BLOCK_TYPES or mime.startswith("image/"):
                has_image = True
            elif block.get("type") in FILE_BLOCK_TYPES or block.get("file"):
                has_file = True
        if self.files or self.attachments:
            has_file = True
        if has_image:
            return "image"
        return "file" if has_file else None


class UserChatRef(_Payload):
    id: str
    user_id: str = Field(alias="userId")
    contact_key: str | None = Field(default=None, alias="contactKey")


class Refers(_Payload):
    user_chat: UserChatRef = Field(alias="userChat")


class WebhookPayload(_Payload):
    """``{"entity": {...}, "refers": {"userChat": {...}}}``."""

    entity: MessageEntity
    refers: Refers


# ── Service endpoints ────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "careconnect"


class HumanModeUser(BaseModel):
    user_id: str
    last_activity: str | None
    minutes_ago: int | None
    needs_timeout: bool


class PendingBooking(BaseModel):
    user_id: str
    step: str | None
    selected_time: str | None
    minutes_ago: int | None


class StatusResponse(BaseModel):
    """Operational snapshot built from the session collection."""

    timestamp: str
    human_mode_users: list[HumanModeUser]
    human_mode_needing_timeout: int
    pending_bookings: list[PendingBooking]
    cooldown_users: int
