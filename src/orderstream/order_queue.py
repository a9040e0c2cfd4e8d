"""
In-process ingestion queue for raw order announcements.

The queue is unbounded between drain passes. Before each pass the batch
persister calls enforce_ceiling(), which drops the oldest entries so that at
most max_size remain. Stale orders lose relevance quickly, so freshness wins
over completeness. Producers are never told that entries were dropped.
"""

import time
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List

logger = logging.getLogger(__name__)


@dataclass
class QueueEntry:
    """A raw, unvalidated frame plus the time it was received."""
    payload: Dict[str, Any]
    received_at: float = field(default_factory=time.time)


class IngestionQueue:
    """FIFO of queue entries with drop-oldest eviction."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._entries: Deque[QueueEntry] = deque()
        self.dropped_total = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def push(self, entry: QueueEntry) -> None:
        self._entries.append(entry)

    def enforce_ceiling(self) -> int:
        """Keep only the newest max_size entries. Returns how many were dropped."""
        size = len(self._entries)
        if size < self.max_size:
            return 0

        logger.warning(f"Order queue size ({size}) has reached limit. Dropping older orders.")
        dropped = size - self.max_size
        for _ in range(dropped):
            self._entries.popleft()
        self.dropped_total += dropped
        return dropped

    def take_batch(self, batch_size: int) -> List[QueueEntry]:
        """Remove and return up to batch_size entries from the head."""
        count = min(batch_size, len(self._entries))
        return [self._entries.popleft() for _ in range(count)]

    def clear(self) -> None:
        self._entries.clear()
