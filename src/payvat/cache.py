"""Short-lived in-memory cache for per-user VAT aggregates.

The aggregate (VAT return summary) endpoints that fill this cache live outside
this service; document processing only invalidates a user's entries after a
successful write.
"""
from __future__ import annotations

import time
from typing import Any, Callable

import structlog

logger = structlog.get_logger(__name__)

GUEST_KEY = "guest"


def cache_key(user_id: str | None, vat_return_id: str | None = None, category: str | None = None) -> str:
    return f"{user_id or GUEST_KEY}-{vat_return_id or 'all'}-{category or 'all'}"


class AggregateCache:
    """TTL map of aggregate responses keyed by user, VAT return and category."""

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[str, float, Any]] = {}

    def get(self, user_id: str | None, vat_return_id: str | None = None, category: str | None = None) -> Any | None:
        key = cache_key(user_id, vat_return_id, category)
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, stored_at, value = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        return value

    def set(self, user_id: str | None, value: Any, vat_return_id: str | None = None, category: str | None = None) -> None:
        owner = user_id or GUEST_KEY
        self._entries[cache_key(user_id, vat_return_id, category)] = (owner, self._clock(), value)

    def invalidate_user(self, user_id: str | None) -> int:
        """Drop every entry for ``user_id`` (or the guest bucket). Returns the count dropped."""
        owner = user_id or GUEST_KEY
        stale = [key for key, entry in self._entries.items() if entry[0] == owner]
        for key in stale:
            del self._entries[key]
        logger.debug("aggregate_cache_invalidated", user_id=user_id or GUEST_KEY, entries=len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
