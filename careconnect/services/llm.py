"""Decision / generation oracle backed by Claude via ``langchain-anthropic``.

The rest of the pipeline only sees :meth:`LLMClient.generate`, which
takes a system instruction, the prior conversation and the text of the
current turn and returns raw text.  Interpreting that text (JSON or
prose) is the caller's job.
"""

from __future__ import annotations

import logging
import threading
import time

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage

from careconnect.config import ANTHROPIC_API_KEY, LLM_TIMEOUT_SECONDS, MODEL_NAME
from careconnect.models import MessageRecord, Sender
from careconnect.services.metrics import metrics

logger = logging.getLogger(__name__)


class LLMNotConfiguredError(RuntimeError):
    """Raised when no Anthropic API key is available."""


def _content_text(content) -> str:
    """Flatten a LangChain message ``content`` (str or list of blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def history_to_messages(history: list[MessageRecord]) -> list[AnyMessage]:
    """Map logged turns to chat messages.

    Anthropic requires the conversation to open with a user turn, so any
    leading bot turns are dropped.
    """
    messages: list[AnyMessage] = []
    for record in history:
        if record.sender is Sender.BOT:
            if not messages:
                continue
            messages.append(AIMessage(content=record.text))
        else:
            messages.append(HumanMessage(content=record.text))
    return messages


class LLMClient:
    """Thin wrapper around ``ChatAnthropic`` with per-setting model reuse."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ) -> None:
        self._api_key = api_key if api_key is not None else ANTHROPIC_API_KEY
        self._model = model or MODEL_NAME
        self._timeout = timeout
        self._models: dict[tuple[int, float], ChatAnthropic] = {}
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _build(self, max_tokens: int, temperature: float) -> ChatAnthropic:
        key = (max_tokens, temperature)
        with self._lock:
            if key not in self._models:
                self._models[key] = ChatAnthropic(
                    model=self._model,
                    api_key=self._api_key,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=self._timeout,
                    max_retries=2,
                )
            return self._models[key]

    async def generate(
        self,
        system_instruction: str,
        history: list[MessageRecord],
        turn_text: str,
        *,
        max_tokens: int,
        temperature: float = 0.7,
        operation: str = "generate",
    ) -> str:
        """Run one completion and return its text (possibly empty)."""
        if not self.configured:
            raise LLMNotConfiguredError("ANTHROPIC_API_KEY is not configured")

        llm = self._build(max_tokens, temperature)
        messages: list[AnyMessage] = [SystemMessage(content=system_instruction)]
        messages += history_to_messages(history)
        messages.append(HumanMessage(content=turn_text))

        t0 = time.perf_counter()
        try:
            response = await llm.ainvoke(messages)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", operation, latency_ms=elapsed)
        text = _content_text(response.content)
        logger.debug("LLM %s (%s) returned %d chars in %.0fms", operation, self._model, len(text), elapsed)
        return text
