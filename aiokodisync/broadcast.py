"""Best-effort multi-listener broadcast used for state changes and notifications."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_PENDING_EVENTS = 32


class BroadcastListener(Generic[T]):
    """Receiving end of a Broadcast, holding its own bounded queue."""

    __slots__ = ("_queue",)

    def __init__(self, maxsize: int) -> None:
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)

    async def get(self) -> T:
        """Wait for the next published value."""
        return await self._queue.get()

    def get_nowait(self) -> T | None:
        """Return the next published value, or None if nothing is queued."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> None:
        """Discard every value published so far."""
        while not self._queue.empty():
            self._queue.get_nowait()

    def _offer(self, value: T) -> bool:
        try:
            self._queue.put_nowait(value)
        except asyncio.QueueFull:
            return False
        return True


class Broadcast(Generic[T]):
    """
    Fan a value out to every current listener without ever blocking the publisher.

    Listeners that are not keeping up lose values: a full listener queue drops
    the new value. Listeners that need the latest value must re-read it from its
    source instead of relying on every publication arriving.
    """

    def __init__(self, name: str, *, maxsize: int = MAX_PENDING_EVENTS) -> None:
        """Create a broadcast, ``name`` is only used for logging."""
        self._name = name
        self._maxsize = maxsize
        self._listeners: list[BroadcastListener[T]] = []

    @property
    def listener_count(self) -> int:
        """Return the number of subscribed listeners."""
        return len(self._listeners)

    def publish(self, value: T) -> int:
        """Offer ``value`` to every listener and return how many accepted it."""
        delivered = 0
        for listener in self._listeners:
            if listener._offer(value):  # noqa: SLF001
                delivered += 1
            else:
                logger.debug("Listener of %s is full, dropping %s", self._name, value)
        return delivered

    @contextmanager
    def subscribe(self) -> Iterator[BroadcastListener[T]]:
        """Register a listener for the duration of the ``with`` block."""
        listener: BroadcastListener[T] = BroadcastListener(self._maxsize)
        self._listeners.append(listener)
        try:
            yield listener
        finally:
            self._listeners.remove(listener)
