"""Shared async HTTP plumbing for the REST collaborators.

Every outbound REST call (Voyage embeddings, Google Calendar, ChannelTalk)
goes through :meth:`ApiClient._request`, which applies a bounded timeout,
exponential-backoff retries for timeouts / connection errors / 5xx, and
raises :class:`ApiError` straight away for 4xx.  Latency and outcome of
each call are recorded in the metrics buffer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from careconnect.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0


class ApiError(Exception):
    """Raised when a collaborator API call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ApiClient:
    """Base class owning one ``httpx.AsyncClient`` per collaborator."""

    service_name = "http"

    def __init__(
        self,
        base_url: str = "",
        *,
        headers: dict[str, str] | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = MAX_RETRIES,
        backoff_seconds: float = INITIAL_BACKOFF_SECONDS,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        last_error: Exception | None = None
        t0 = time.perf_counter()
        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    data=data,
                    headers=headers,
                )
                if response.status_code >= 500:
                    raise ApiError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise ApiError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success(
                    self.service_name, operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                if not response.content:
                    return {}
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "%s %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    self.service_name,
                    operation,
                    attempt,
                    self._max_retries,
                    type(exc).__name__,
                    self._backoff_seconds * (2 ** (attempt - 1)),
                )
            except ApiError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "%s %s server error on attempt %d/%d. Retrying…",
                        self.service_name,
                        operation,
                        attempt,
                        self._max_retries,
                    )
                else:
                    metrics.record_failure(
                        self.service_name, operation, error_type=f"http_{exc.status_code}",
                        latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    raise  # 4xx errors are not retried

            if attempt < self._max_retries:
                await asyncio.sleep(self._backoff_seconds * (2 ** (attempt - 1)))

        metrics.record_failure(
            self.service_name, operation,
            error_type=type(last_error).__name__ if last_error else "unknown",
            latency_ms=(time.perf_counter() - t0) * 1000,
        )
        raise ApiError(
            f"{self.service_name} request failed after {self._max_retries} retries: {last_error}"
        )
