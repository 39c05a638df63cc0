"""Thread-safe in-memory TTL cache with a periodic background sweep.

Design decisions
────────────────
• **Per-entry expiry**: every ``set`` carries its own TTL in seconds.
  Expired entries are invisible to ``get``/``has`` immediately and are
  physically removed by ``sweep``.
• **Injectable clock** (defaults to ``time.monotonic``) so tests can move
  time forward without sleeping.
• **threading.Lock** for thread safety: the webhook handlers, the
  ``asyncio.to_thread`` storage calls and the sweeper all touch the same
  dict.
• **Background sweep** runs as an ``asyncio`` task started and stopped by
  the FastAPI lifespan (every 60 s by default).
• Purely ephemeral: data is lost on process restart.  Anything that must
  outlive a restart (e.g. the outbound-send log) also goes to storage.

Usage
─────
>>> cache = TTLCache()
>>> cache.set("processed:msg-1", True, ttl=600)
>>> cache.get("processed:msg-1")
True
>>> cache.delete("processed:msg-1")
True
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from careconnect.config import CACHE_SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class TTLCache:
    """Key/value store where each entry expires after its own TTL."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key → (value, expires_at)
        self._store: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task | None = None

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the live value for *key* or ``None``."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Insert or overwrite *key* for *ttl* seconds."""
        with self._lock:
            self._store[key] = (value, self._clock() + ttl)

    def add(self, key: str, value: Any, ttl: float) -> bool:
        """Set *key* only if it holds no live value.  Returns ``True`` if set."""
        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            if entry is not None and entry[1] > now:
                return False
            self._store[key] = (value, now + ttl)
            return True

    def delete(self, key: str) -> bool:
        """Remove *key*.  Returns ``True`` if the key existed."""
        with self._lock:
            return self._store.pop(key, None) is not None

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def sweep(self) -> int:
        """Drop every expired entry.  Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._store.items() if expires_at <= now]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        """Number of entries stored, including not-yet-swept expired ones."""
        return len(self._store)

    # ── Background sweeper ───────────────────────────────────────────

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    def start_sweeper(self, interval: float = CACHE_SWEEP_INTERVAL_SECONDS) -> None:
        """Start the periodic sweep on the running event loop (idempotent)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval), name="cache-sweeper")
        logger.info("Cache sweeper started (interval=%ss)", interval)

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("Cache sweeper stopped")


# ── Process-wide instance ───────────────────────────────────────────

_cache: TTLCache | None = None
_cache_lock = threading.Lock()


def get_cache() -> TTLCache:
    """Return the process-wide cache, creating it on first use."""
    global _cache
    if _cache is None:
        with _cache_lock:
            if _cache is None:
                _cache = TTLCache()
    return _cache
