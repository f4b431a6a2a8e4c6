"""Bounded idempotency guard for emitted mints.

Streaming subscriptions redeliver logs after a reconnect, and a restart can
rescan the edge of an already processed range. The cache remembers the last
`capacity` event keys in insertion order and evicts the oldest one when full.

This is at-most-once only within the retention window: a key evicted long
ago is forgotten and would be emitted again if the node replayed it.
"""
from __future__ import annotations

from collections import OrderedDict

from ..domain.models import EventKey


class DeduplicationCache:
    def __init__(self, capacity: int = 4096) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._seen: OrderedDict[EventKey, None] = OrderedDict()

    def has(self, key: EventKey) -> bool:
        return key in self._seen

    def remember(self, key: EventKey) -> None:
        if key in self._seen:
            return
        self._seen[key] = None
        while len(self._seen) > self.capacity:
            self._seen.popitem(last=False)

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: object) -> bool:
        return key in self._seen
