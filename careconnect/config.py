"""Centralized configuration for the CareConnect conversational agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/careconnect/<VARIABLE_NAME>``.

Unlike a hard-failing loader, a missing credential only logs a warning:
the collaborator that needs it (LLM, calendar, transport, embeddings)
reports itself as unconfigured and the pipeline degrades to its fallback
path instead of refusing to start.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/careconnect/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_secret(name: str) -> str:
    """Return a secret from env-var or SSM, or ``""`` with a warning."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    logger.warning(
        "Configuration %s is not set; the dependent integration is disabled. "
        "Set it in .env (local) or SSM Parameter Store /careconnect/%s (AWS).",
        name, name,
    )
    return ""


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %d", name, raw, default)
        return default


# ── LLM (decision + generation oracle) ──────────────────────────────
ANTHROPIC_API_KEY: str = _optional_secret("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
LLM_TIMEOUT_SECONDS: int = _int_env("LLM_TIMEOUT_SECONDS", 30)

# ── Embeddings ──────────────────────────────────────────────────────
VOYAGE_API_KEY: str = _optional_secret("VOYAGE_API_KEY")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "voyage-3")
VOYAGE_BASE_URL: str = "https://api.voyageai.com/v1"

# ── Chat transport (ChannelTalk Open API) ───────────────────────────
CHANNELTALK_ACCESS_KEY: str = _optional_secret("CHANNELTALK_ACCESS_KEY")
CHANNELTALK_ACCESS_SECRET: str = _optional_secret("CHANNELTALK_ACCESS_SECRET")
CHANNELTALK_BOT_NAME: str = os.getenv("CHANNELTALK_BOT_NAME", "CareConnect AI")
CHANNELTALK_BASE_URL: str = "https://api.channel.io/open/v5"

# ── Calendar (Google Calendar v3) ───────────────────────────────────
GOOGLE_CALENDAR_ID: str = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GOOGLE_CLIENT_ID: str = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET: str = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REFRESH_TOKEN: str = _optional_secret("GOOGLE_REFRESH_TOKEN")
GOOGLE_ACCESS_TOKEN: str = os.getenv("GOOGLE_ACCESS_TOKEN", "")
GOOGLE_CALENDAR_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"

# ── Region / locale ─────────────────────────────────────────────────
TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Seoul")
DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "ko")
BUSINESS_OPEN_HOUR: int = _int_env("BUSINESS_OPEN_HOUR", 10)
BUSINESS_CLOSE_HOUR: int = _int_env("BUSINESS_CLOSE_HOUR", 19)

# ── Storage ─────────────────────────────────────────────────────────
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()
DYNAMODB_TABLE_PREFIX: str = os.getenv("DYNAMODB_TABLE_PREFIX", "careconnect-")

# ── Conversation policy ─────────────────────────────────────────────
HUMAN_MODE_TIMEOUT_MINUTES: int = _int_env("HUMAN_MODE_TIMEOUT_MINUTES", 30)
CONVERSATION_GAP_MINUTES: int = _int_env("CONVERSATION_GAP_MINUTES", 10)
CONSULTATION_READY_THRESHOLD: int = _int_env("CONSULTATION_READY_THRESHOLD", 3)
HUMAN_HANDOFF_THRESHOLD: int = _int_env("HUMAN_HANDOFF_THRESHOLD", 3)
HISTORY_LIMIT: int = _int_env("HISTORY_LIMIT", 10)
RESPONSE_CHAR_LIMIT: int = _int_env("RESPONSE_CHAR_LIMIT", 250)
RESPONSE_MIN_CHARS: int = _int_env("RESPONSE_MIN_CHARS", 100)
MANAGER_RESET_TOKEN: str = os.getenv("MANAGER_RESET_TOKEN", "//")

# ── Booking ─────────────────────────────────────────────────────────
APPOINTMENT_MINUTES: int = _int_env("APPOINTMENT_MINUTES", 30)
SLOT_SEARCH_HOURS: int = _int_env("SLOT_SEARCH_HOURS", 4)
DEFAULT_SERVICE_TYPE: str = os.getenv("DEFAULT_SERVICE_TYPE", "Consultation")

# ── Cache TTLs (seconds) ────────────────────────────────────────────
PROCESSED_TTL_SECONDS: int = _int_env("PROCESSED_TTL_SECONDS", 600)
OUTBOUND_TTL_SECONDS: int = _int_env("OUTBOUND_TTL_SECONDS", 60)
DEBOUNCE_TTL_SECONDS: int = _int_env("DEBOUNCE_TTL_SECONDS", 2)
KNOWLEDGE_TTL_SECONDS: int = _int_env("KNOWLEDGE_TTL_SECONDS", 300)
CACHE_SWEEP_INTERVAL_SECONDS: int = _int_env("CACHE_SWEEP_INTERVAL_SECONDS", 60)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
