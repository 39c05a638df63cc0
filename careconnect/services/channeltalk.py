"""ChannelTalk (Channel.io) Open API v5 client for bot messages.

Only the raw POST lives here; the echo-suppression bookkeeping around a
send is done by :class:`careconnect.idempotency.Messenger`.
"""

from __future__ import annotations

import logging
from typing import Any

from careconnect.config import (
    CHANNELTALK_ACCESS_KEY,
    CHANNELTALK_ACCESS_SECRET,
    CHANNELTALK_BASE_URL,
    CHANNELTALK_BOT_NAME,
)
from careconnect.services.http import ApiClient

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 10.0


class ChannelTalkClient(ApiClient):
    service_name = "channeltalk"

    def __init__(
        self,
        access_key: str | None = None,
        access_secret: str | None = None,
        bot_name: str | None = None,
        **kwargs,
    ):
        self._access_key = access_key if access_key is not None else CHANNELTALK_ACCESS_KEY
        self._access_secret = access_secret if access_secret is not None else CHANNELTALK_ACCESS_SECRET
        self._bot_name = bot_name or CHANNELTALK_BOT_NAME
        kwargs.setdefault("timeout", SEND_TIMEOUT_SECONDS)
        # A retried POST could post the same bubble twice.
        kwargs.setdefault("max_retries", 1)
        super().__init__(
            CHANNELTALK_BASE_URL,
            headers={
                "X-Access-Key": self._access_key,
                "X-Access-Secret": self._access_secret,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self._access_key and self._access_secret)

    async def post_message(self, user_chat_id: str, text: str, message_id: str) -> dict[str, Any]:
        """Post *text* as the bot into *user_chat_id*.

        *message_id* is our correlation id; ChannelTalk echoes it back as
        ``externalMessageId`` on the resulting webhook event.
        """
        return await self._request(
            "POST",
            f"/user-chats/{user_chat_id}/messages",
            operation="send_message",
            params={"botName": self._bot_name},
            json_body={"messageId": message_id, "blocks": [{"type": "text", "value": text}]},
        )
