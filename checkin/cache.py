"""
In-memory TTL cache used in front of the database for read-heavy lookups.

Entries expire lazily: an expired entry stays in the map until the next
``get`` for its key (or an explicit delete/clear). There is no capacity
bound; the working set is a single event's roster.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

DEFAULT_TTL_MS = 30_000

PARTICIPANTS_ALL = "participants_all"
VOLUNTEERS_ALL = "volunteers_all"
EVENTS_ALL = "events_all"
SCAN_STATS = "scan_stats"


def participant_qr_key(qr_code: str) -> str:
    return f"participant_qr_{qr_code}"


def volunteer_email_key(email: str) -> str:
    return f"volunteer_email_{email}"


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    ttl_ms: int

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) * 1000 >= self.ttl_ms


class TtlCache:
    """Maps string keys to values with a per-entry time-to-live."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: int = DEFAULT_TTL_MS) -> None:
        self._entries[key] = CacheEntry(
            value=value, created_at=self._clock(), ttl_ms=ttl_ms
        )

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        """Keys physically present, including expired ones not yet evicted."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
