"""Match responses arriving in any order to the requests that caused them."""

from __future__ import annotations

import asyncio
import itertools
import logging

from aiokodisync.models import Operation, RpcMessage

logger = logging.getLogger(__name__)


class Correlator:
    """
    Tracks the requests of one node connection that still await a response.

    Identifiers come from a per-connection counter starting at 1. Python
    integers do not wrap around, so an identifier is never reused while the
    connection is alive.
    """

    def __init__(self) -> None:
        """Create an empty correlator."""
        self._ids = itertools.count(1)
        self._pending: dict[int, Operation] = {}
        self._waiters: dict[int, asyncio.Future[RpcMessage | None]] = {}

    @property
    def pending(self) -> int:
        """Return the number of requests awaiting a response."""
        return len(self._pending)

    def next_id(self) -> int:
        """Return a fresh request identifier."""
        return next(self._ids)

    def is_pending(self, request_id: int) -> bool:
        """Return True if ``request_id`` was sent and not answered yet."""
        return request_id in self._pending

    def register(self, request_id: int, operation: Operation) -> None:
        """Record that ``request_id`` was sent for ``operation``."""
        if request_id in self._pending:
            raise RuntimeError(f"Request id {request_id} is already awaiting a response")
        self._pending[request_id] = operation

    def discard(self, request_id: int) -> None:
        """Forget a request that could not be sent."""
        self._pending.pop(request_id, None)
        self.release(request_id, None)

    def watch(self, request_id: int) -> asyncio.Future[RpcMessage | None]:
        """Return a future resolved with the response to ``request_id``."""
        waiter = self._waiters.get(request_id)
        if waiter is None:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters[request_id] = waiter
        return waiter

    def unwatch(self, request_id: int) -> None:
        """Stop waiting for ``request_id``, the entry itself stays pending."""
        waiter = self._waiters.pop(request_id, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()

    def resolve(self, request_id: int) -> Operation | None:
        """Consume the entry of ``request_id`` and return its operation."""
        operation = self._pending.pop(request_id, None)
        if operation is None:
            logger.debug("No pending request with id %s", request_id)
        return operation

    def release(self, request_id: int, message: RpcMessage | None) -> None:
        """Wake whoever waits for ``request_id``; nothing happens if nobody does."""
        waiter = self._waiters.pop(request_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(message)

    def close(self) -> None:
        """Drop every pending entry and release all waiters with None."""
        self._pending.clear()
        waiters = self._waiters
        self._waiters = {}
        for waiter in waiters.values():
            if not waiter.done():
                waiter.set_result(None)
