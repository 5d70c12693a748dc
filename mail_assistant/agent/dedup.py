"""Bounded memory of recently seen message ids."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10_000


class DedupWindow:
    """Insertion-ordered set of ids; when full, the oldest half is forgotten."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 2:
            raise ValueError("capacity must be at least 2")
        self._capacity = capacity
        # dict preserves insertion order; values are unused.
        self._ids: dict[str, None] = {}

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> bool:
        """Record ``message_id``. Returns False if it was already present."""
        if message_id in self._ids:
            return False
        self._ids[message_id] = None
        if len(self._ids) > self._capacity:
            drop = len(self._ids) // 2
            for stale in list(self._ids)[:drop]:
                del self._ids[stale]
            logger.debug("Dedup window evicted %d oldest ids", drop)
        return True
