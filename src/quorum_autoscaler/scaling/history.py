"""
In-memory scaling history.

A bounded ring buffer of decisions per cluster, consulted only for cooldown
and stabilization-window lookups. Lost on restart.
"""
from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from ..core.config import settings
from ..core.constants import Tier
from ..domain.models import ScalingAction, ScalingHistoryEntry


class ScalingHistory:
    """Decision history of one cluster. Not thread-safe on its own."""

    def __init__(self, maxlen: int):
        self._entries: deque[ScalingHistoryEntry] = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ScalingHistoryEntry]:
        return iter(self._entries)

    def append(self, entry: ScalingHistoryEntry) -> None:
        self._entries.append(entry)

    def entries(self, tier: Tier | None = None) -> list[ScalingHistoryEntry]:
        return [e for e in self._entries if tier is None or e.tier == tier]

    def within(self, tier: Tier, window: timedelta, now: datetime) -> list[ScalingHistoryEntry]:
        """Entries for ``tier`` no older than ``window`` before ``now``."""
        since = now - window
        return [e for e in self._entries if e.tier == tier and e.timestamp >= since]

    def last_decision_time(self, tier: Tier) -> datetime | None:
        for entry in reversed(self._entries):
            if entry.tier == tier:
                return entry.timestamp
        return None

    def actions(self, tier: Tier) -> list[ScalingHistoryEntry]:
        return [e for e in self._entries if e.tier == tier and e.action != ScalingAction.NONE]

    def prune(self, older_than: datetime) -> int:
        removed = 0
        while self._entries and self._entries[0].timestamp < older_than:
            self._entries.popleft()
            removed += 1
        return removed


class ScalingHistoryStore:
    """Histories keyed by cluster, each behind its own exclusive lock."""

    def __init__(self, maxlen: int | None = None, retention: timedelta | None = None):
        self.maxlen = maxlen or settings.history_size
        self.retention = retention or timedelta(seconds=settings.history_retention_seconds)
        self._histories: dict[str, ScalingHistory] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._store_lock = threading.Lock()

    def _lock_for(self, cluster_key: str) -> threading.Lock:
        with self._store_lock:
            lock = self._locks.get(cluster_key)
            if lock is None:
                lock = self._locks[cluster_key] = threading.Lock()
                self._histories[cluster_key] = ScalingHistory(self.maxlen)
            return lock

    @contextmanager
    def locked(self, cluster_key: str) -> Iterator[ScalingHistory]:
        """Exclusive access to one cluster's history for a read-decide-append sequence."""
        with self._lock_for(cluster_key):
            yield self._histories.setdefault(cluster_key, ScalingHistory(self.maxlen))

    def snapshot(self, cluster_key: str) -> list[ScalingHistoryEntry]:
        with self.locked(cluster_key) as history:
            return history.entries()

    def forget(self, cluster_key: str) -> None:
        """Drop a deleted cluster's history."""
        with self._store_lock:
            self._locks.pop(cluster_key, None)
            self._histories.pop(cluster_key, None)
