"""Tests for request/response correlation."""

import pytest

from aiokodisync.models import Operation, RpcMessage
from aiokodisync.node import Correlator


class TestCorrelator:
    """Tests for Correlator."""

    def test_ids_are_unique(self):
        """Test that identifiers start at 1 and never repeat."""
        correlator = Correlator()
        ids = [correlator.next_id() for _ in range(1000)]
        assert ids[0] == 1
        assert len(set(ids)) == 1000

    def test_duplicate_register_raises(self):
        """Test that registering a pending id twice is refused."""
        correlator = Correlator()
        correlator.register(1, Operation.SPEED)
        with pytest.raises(RuntimeError):
            correlator.register(1, Operation.ELAPSED_TIME)
        assert correlator.resolve(1) is Operation.SPEED

    def test_resolve_consumes_entry(self):
        """Test that an entry is resolved exactly once."""
        correlator = Correlator()
        correlator.register(4, Operation.ELAPSED_TIME)
        assert correlator.is_pending(4)
        assert correlator.resolve(4) is Operation.ELAPSED_TIME
        assert not correlator.is_pending(4)
        assert correlator.resolve(4) is None
        assert correlator.pending == 0

    def test_unknown_id(self):
        """Test resolving an id that was never registered."""
        assert Correlator().resolve(99) is None

    def test_discard(self):
        """Test forgetting a request that was never sent."""
        correlator = Correlator()
        correlator.register(2, Operation.NONE)
        correlator.discard(2)
        assert not correlator.is_pending(2)
        # The id can be registered again once discarded
        correlator.register(2, Operation.NONE)

    def test_release_without_waiter(self):
        """Test that releasing an id nobody waits for does nothing."""
        correlator = Correlator()
        correlator.release(1, RpcMessage(id=1, result="OK"))

    @pytest.mark.asyncio
    async def test_release_wakes_waiter(self):
        """Test that the waiter receives the response."""
        correlator = Correlator()
        waiter = correlator.watch(1)
        correlator.register(1, Operation.NONE)
        message = RpcMessage(id=1, result="OK")
        correlator.release(1, message)
        assert await waiter is message

    @pytest.mark.asyncio
    async def test_close_releases_waiters(self):
        """Test that closing wakes every waiter with None."""
        correlator = Correlator()
        first = correlator.watch(1)
        second = correlator.watch(2)
        correlator.register(1, Operation.SPEED)
        correlator.close()
        assert await first is None
        assert await second is None
        assert correlator.pending == 0

    @pytest.mark.asyncio
    async def test_unwatch_keeps_entry(self):
        """Test that giving up waiting leaves the entry pending."""
        correlator = Correlator()
        waiter = correlator.watch(1)
        correlator.register(1, Operation.ELAPSED_TIME)
        correlator.unwatch(1)
        assert waiter.cancelled()
        assert correlator.resolve(1) is Operation.ELAPSED_TIME
        # Releasing after unwatch is harmless
        correlator.release(1, None)
