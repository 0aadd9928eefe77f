# Copyright (c) Kirky.X. 2025. All rights reserved.
from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class PatternSnapshot:
    """Detached copy of a `query_patterns` row used by the TTL calculator."""

    pattern: str
    frequency: int
    avg_execution_time: float
    suggested_ttl: int
    cache_priority: int
    last_executed: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "PatternSnapshot":
        return cls(
            pattern=row.pattern,
            frequency=int(row.frequency or 0),
            avg_execution_time=float(row.avg_execution_time or 0.0),
            suggested_ttl=int(row.suggested_ttl or 0),
            cache_priority=int(row.cache_priority or 0),
            last_executed=row.last_executed,
        )


class PatternTable:
    """In-memory lookup of learned pattern statistics.

    Shared between the request path and the periodic analyzer. Entries are
    immutable snapshots, so readers never observe a half-updated pattern; the
    lock only guards the mapping itself. Capacity is bounded with LRU eviction.

    Args:
        max_capacity (int): Maximum number of patterns kept in memory.
    """

    def __init__(self, max_capacity: int = 10000):
        self.max_capacity = max(1, int(max_capacity))
        self._lock = threading.Lock()
        self._store: OrderedDict[str, PatternSnapshot] = OrderedDict()

    def get(self, pattern: str) -> Optional[PatternSnapshot]:
        with self._lock:
            snapshot = self._store.get(pattern)
            if snapshot is not None:
                self._store.move_to_end(pattern)
            return snapshot

    def put(self, snapshot: PatternSnapshot) -> None:
        with self._lock:
            self._store[snapshot.pattern] = snapshot
            self._store.move_to_end(snapshot.pattern)
            while len(self._store) > self.max_capacity:
                self._store.popitem(last=False)

    def remove(self, pattern: str) -> None:
        with self._lock:
            self._store.pop(pattern, None)

    def snapshot(self) -> Dict[str, PatternSnapshot]:
        with self._lock:
            return dict(self._store)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, pattern: str) -> bool:
        with self._lock:
            return pattern in self._store
