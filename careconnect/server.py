"""FastAPI server for the CareConnect webhook service.

Run with:
    uvicorn careconnect.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from careconnect.api.routes import router
from careconnect.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from careconnect.orchestrator import create_orchestrator
from careconnect.services.cache import get_cache
from careconnect.services.metrics import metrics
from careconnect.services.storage import create_document_store

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: wire storage, cache and the orchestrator once; start the cache sweeper."""
    cache = get_cache()
    store = create_document_store()
    application.state.store = store
    application.state.orchestrator = create_orchestrator(store=store, cache=cache)
    cache.start_sweeper()
    logger.info("CareConnect ready.")
    yield
    await cache.stop_sweeper()
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="CareConnect AI",
    description="ChannelTalk webhook orchestrator: consultation answers, booking and human handoff.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "CareConnect AI",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "webhook": "/api/webhook/channeltalk",
    }


if __name__ == "__main__":
    logger.info("Starting CareConnect server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("careconnect.server:app", host=SERVER_HOST, port=SERVER_PORT, reload=True)
