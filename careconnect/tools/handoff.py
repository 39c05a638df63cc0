"""Human handoff tool, gated by how often the user has asked."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from careconnect.config import HUMAN_HANDOFF_THRESHOLD
from careconnect.models import Mode, ToolAction, ToolResult
from careconnect.session import SessionStore
from careconnect.tools.schemas import HumanAgentRequest

logger = logging.getLogger(__name__)


async def request_human_agent(
    arguments: dict[str, Any],
    sessions: SessionStore,
    *,
    threshold: int = HUMAN_HANDOFF_THRESHOLD,
) -> ToolResult:
    """Switch the session to HUMAN_MODE once the user has asked *threshold* times."""
    try:
        request = HumanAgentRequest.model_validate(arguments)
    except ValidationError as exc:
        return ToolResult(False, ToolAction.VALIDATION_FAILED, exc.errors()[0].get("msg"))

    count = await sessions.increment_human_requests(request.user_id)
    if count < threshold:
        logger.info("Handoff request %d/%d for %s, AI continues", count, threshold, request.user_id)
        return ToolResult(
            False,
            ToolAction.RATE_LIMITED,
            "The assistant will keep helping; ask again if you still need a person.",
            data={"request_count": count},
        )

    switched = await sessions.set_mode(
        request.user_id,
        Mode.HUMAN_MODE,
        handoff_reason=request.reason,
        handoff_context=request.context,
        human_request_count=0,
    )
    if not switched:
        return ToolResult(False, ToolAction.SYSTEM_ERROR, "Could not connect an operator right now.")
    logger.info("Handoff approved for %s (reason=%s)", request.user_id, request.reason or "-")
    return ToolResult(True, ToolAction.HUMAN_AGENT_REQUESTED,
                      "An operator will be with you shortly.", data={"mode": Mode.HUMAN_MODE.value})
