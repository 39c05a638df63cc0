"""FastAPI route definitions for the CareConnect webhook service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse

from careconnect.api.schemas import HealthResponse, StatusResponse
from careconnect.monitoring import build_status
from careconnect.orchestrator import Orchestrator, WebhookOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_orchestrator(request: Request) -> Orchestrator:
    """Retrieve the orchestrator built during the FastAPI lifespan (see ``server.py``)."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return orchestrator


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.get("/status", response_model=StatusResponse)
async def system_status(http_request: Request):
    """Human-mode users, unfinished bookings and cooldown count."""
    store = getattr(http_request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Storage is not ready.")
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        return await build_status(store)
    except Exception as e:
        logger.exception("[%s] Error building system status", request_id)
        raise HTTPException(status_code=500, detail="An internal error occurred.") from e


@router.post("/webhook/channeltalk", response_class=PlainTextResponse)
async def channeltalk_webhook(http_request: Request):
    """Receive one ChannelTalk event.

    Every handled case (including duplicates, echoes and mode-gated
    messages) is acknowledged with HTTP 200 and a short plain-text
    outcome so ChannelTalk does not redeliver.  Only unexpected faults
    return 500, without details.
    """
    orchestrator = _get_orchestrator(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        payload = await http_request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.info("[%s] Webhook body is not a JSON object", request_id)
        return PlainTextResponse(WebhookOutcome.MISSING_DATA.value)

    try:
        outcome = await orchestrator.handle(payload)
    except Exception:
        logger.exception("[%s] Error processing webhook", request_id)
        return PlainTextResponse("server_error", status_code=500)
    return PlainTextResponse(outcome.value)
