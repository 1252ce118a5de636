# backend/audio/queues.py
"""
Bounded outbound audio queue with drop-oldest overflow.

Requirements:
- Never exceeds capacity
- try_enqueue never blocks; on overflow the OLDEST unconsumed item is
  evicted so live audio stays fresh (recency over completeness)
- Every eviction is counted; data loss is observable
- enqueue_blocking waits for space instead of evicting (stop signal and
  silence padding must not push out queued speech)
- Retained items keep their enqueue order
- Single reader, multiple writers, one event loop
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Optional

from audio.frames import QueueItem
from constants import SEND_QUEUE_CAPACITY


class BoundedAudioQueue:
    """
    Bounded FIFO of QueueItem objects between producers and the send loop.

    Close semantics:
    - close() is idempotent
    - after close, enqueue attempts return False
    - the reader drains what is left, then wait_to_read() returns False
    """

    def __init__(self, *, capacity: int = SEND_QUEUE_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._items: Deque[QueueItem] = deque()
        self._closed = False

        self._not_empty = asyncio.Event()
        self._not_full = asyncio.Event()
        self._not_full.set()

        self.skipped: int = 0

    # -------------------------
    # Writers
    # -------------------------

    def try_enqueue(self, item: QueueItem) -> bool:
        """
        Enqueue without waiting.

        Returns:
            True if enqueued (possibly after evicting the oldest item)
            False if the queue is closed
        """
        if self._closed:
            return False

        if len(self._items) >= self._capacity:
            self._items.popleft()
            self.skipped += 1

        self._append(item)
        return True

    async def enqueue_blocking(self, item: QueueItem) -> bool:
        """
        Enqueue, waiting for free space instead of evicting.

        Returns False if the queue is (or becomes) closed before the item
        could be stored.
        """
        while True:
            if self._closed:
                return False
            if len(self._items) < self._capacity:
                self._append(item)
                return True
            await self._not_full.wait()

    # -------------------------
    # Reader
    # -------------------------

    async def wait_to_read(self) -> bool:
        """
        Wait until an item is available.

        Returns:
            True when at least one item can be dequeued
            False at end-of-stream (closed and fully drained)
        """
        while True:
            if self._items:
                return True
            if self._closed:
                return False
            await self._not_empty.wait()

    def try_dequeue(self) -> Optional[QueueItem]:
        """Remove and return the oldest item, or None if empty."""
        if not self._items:
            return None

        item = self._items.popleft()
        if not self._items:
            self._not_empty.clear()
        self._not_full.set()
        return item

    def drain(self) -> list[QueueItem]:
        """Remove and return every currently available item, oldest first."""
        items: list[QueueItem] = []
        while True:
            item = self.try_dequeue()
            if item is None:
                return items
            items.append(item)

    # -------------------------
    # Lifecycle
    # -------------------------

    def close(self) -> None:
        """Stop accepting items and wake every waiter."""
        if self._closed:
            return
        self._closed = True
        self._not_empty.set()
        self._not_full.set()

    # -------------------------
    # Introspection helpers
    # -------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def snapshot(self) -> dict[str, int | bool]:
        """
        Lightweight snapshot for logging.
        """
        return {
            "items": len(self._items),
            "capacity": self._capacity,
            "skipped": self.skipped,
            "closed": self._closed,
        }

    # -------------------------
    # Internal
    # -------------------------

    def _append(self, item: QueueItem) -> None:
        self._items.append(item)
        self._not_empty.set()
        if len(self._items) >= self._capacity:
            self._not_full.clear()
