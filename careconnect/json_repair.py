"""Best-effort recovery of a JSON object from LLM output.

Models asked for "strict JSON" still wrap it in code fences, add prose
around it, drop commas between properties, leave keys unquoted or leave
a trailing comma.  Each of those is handled by one pure ``str -> str``
transform below; :data:`REPAIR_STEPS` applies them in order.  Parsing
always tries the raw text first and only falls back to the repaired
text; ``None`` means give up.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)
_MISSING_COMMA = re.compile(r'([}\]"]|\d|true|false|null)(\s*\n?\s*)(")(?=[^"\n]*"\s*:)')
_BARE_KEY = re.compile(r'([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)')
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or *text* unchanged."""
    match = _FENCE.search(text)
    return match.group(1) if match else text


def extract_object_span(text: str) -> str:
    """Keep everything from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[start:end + 1]


def strip_control_characters(text: str) -> str:
    return _CONTROL_CHARS.sub("", text)


def insert_missing_commas(text: str) -> str:
    """Add the comma between ``"a": 1 "b": 2`` style adjacent properties."""
    return _MISSING_COMMA.sub(r"\1,\2\3", text)


def quote_bare_keys(text: str) -> str:
    """``{action: "X"}`` becomes ``{"action": "X"}``."""
    return _BARE_KEY.sub(r'\1"\2"\3', text)


def drop_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


REPAIR_STEPS: tuple[Callable[[str], str], ...] = (
    strip_code_fences,
    extract_object_span,
    strip_control_characters,
    insert_missing_commas,
    quote_bare_keys,
    drop_trailing_commas,
)


def repair(text: str) -> str:
    for step in REPAIR_STEPS:
        text = step(text)
    return text


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def parse_json_object(text: str | None) -> dict[str, Any] | None:
    """Parse *text* as a JSON object, repairing it if the strict parse fails."""
    if not text or not text.strip():
        return None

    parsed = _loads_object(text.strip())
    if parsed is not None:
        return parsed

    repaired = repair(text)
    parsed = _loads_object(repaired)
    if parsed is None:
        logger.debug("JSON repair gave up on: %.200s", text)
    return parsed
