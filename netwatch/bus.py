"""Bounded drop-oldest buses shared between producers and drain loops."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import AsyncIterator, Deque, Generic, TypeVar

from netwatch.models import Finding, Sample

T = TypeVar("T")

SAMPLE_BUS_CAPACITY = 1024
FINDING_BUS_CAPACITY = 256


class BusClosed(Exception):
    """Raised by get() once a completed bus has been drained."""


class BoundedBus(Generic[T]):
    """
    Single shared queue with a fixed capacity.

    Publishing never blocks: when the buffer is full the oldest item is evicted.
    Readers compete for items, each item is handed to exactly one reader.
    Must be used from the event loop thread that runs the readers.
    """

    def __init__(self, capacity: int, *, name: str = "bus"):
        self.name = name
        self.capacity = max(1, int(capacity))
        self._items: Deque[T] = deque()
        self._ready = asyncio.Event()
        self._completed = False
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def completed(self) -> bool:
        return self._completed

    def try_publish(self, item: T) -> bool:
        if self._completed:
            return False
        if len(self._items) >= self.capacity:
            self._items.popleft()
            self.dropped += 1
        self._items.append(item)
        self._ready.set()
        return True

    async def publish(self, item: T) -> None:
        """Publish without waiting; evicts the oldest item when full.

        Items published after complete() are silently dropped. Use try_publish to
        find out whether an item was accepted.
        """
        self.try_publish(item)

    async def get(self) -> T:
        while True:
            if self._items:
                item = self._items.popleft()
                if not self._items and not self._completed:
                    self._ready.clear()
                return item
            if self._completed:
                raise BusClosed(self.name)
            self._ready.clear()
            await self._ready.wait()

    async def read_all(self) -> AsyncIterator[T]:
        while True:
            try:
                item = await self.get()
            except BusClosed:
                return
            yield item

    def complete(self) -> None:
        self._completed = True
        # Wake every waiting reader so they can drain and observe completion.
        self._ready.set()


class SampleBus(BoundedBus[Sample]):
    def __init__(self, capacity: int = SAMPLE_BUS_CAPACITY):
        super().__init__(capacity, name="samples")


class FindingBus(BoundedBus[Finding]):
    def __init__(self, capacity: int = FINDING_BUS_CAPACITY):
        super().__init__(capacity, name="findings")
