"""Catch-up synchronization of the nodes of a pool.

Every pass measures the elapsed time of each node, takes the most behind node
as reference and pauses every other node for exactly as long as it is ahead of
the reference. A pause or resume arriving from outside while nodes are held
interrupts the pass: held nodes are left to the global pause instead of being
resumed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .broadcast import BroadcastListener
from .config import SyncSettings
from .models import PlaybackState
from .node import NodeClient

# NodePool imports this module, so only import it for annotations
if TYPE_CHECKING:
    from .pool import NodePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Hold:
    """A node to pause while the reference catches up."""

    node: NodeClient
    delay: float
    """Seconds the node is ahead of the reference."""


@dataclass(frozen=True, slots=True)
class CatchUpPlan:
    """Outcome of comparing the elapsed times of a pool."""

    reference: NodeClient
    """The most behind node, which keeps playing."""
    spread: float
    """Seconds between the most ahead node and the reference."""
    holds: list[Hold] = field(default_factory=list)


def plan_catch_up(nodes: Sequence[NodeClient], threshold: float) -> CatchUpPlan | None:
    """
    Decide which nodes to hold and for how long.

    Nodes without a measurement are ignored. Returns None when fewer than two
    nodes were measured or when the spread is below ``threshold``. Nodes with
    the same elapsed time keep their relative order; nodes not ahead of the
    reference need no hold.
    """
    measured = [node for node in nodes if node.elapsed is not None]
    if len(measured) < 2:
        return None
    ordered = sorted(measured, key=lambda node: node.elapsed or 0.0)
    reference = ordered[0]
    reference_time = reference.elapsed or 0.0
    spread = (ordered[-1].elapsed or 0.0) - reference_time
    if spread < threshold:
        return None

    holds: list[Hold] = []
    for node in ordered[1:]:
        delay = (node.elapsed or 0.0) - reference_time
        if delay > 0:
            holds.append(Hold(node, delay))
    return CatchUpPlan(reference=reference, spread=spread, holds=holds)


class Synchronizer:
    """Periodically runs catch-up passes while the pool is playing."""

    def __init__(self, pool: NodePool, settings: SyncSettings | None = None) -> None:
        """Create a synchronizer for ``pool``."""
        self._pool = pool
        self._settings = settings or pool.settings
        self._passes = 0

    @property
    def passes(self) -> int:
        """Return how many passes issued catch-up commands."""
        return self._passes

    async def run(self) -> None:
        """Synchronize every check interval; suspend while the pool is not playing."""
        with self._pool.state_changes.subscribe() as listener:
            while True:
                # Re-read the state before waiting, a change published before the
                # drain is visible through the lock.
                listener.drain()
                state = await self._pool.get_state()
                if state is not PlaybackState.PLAYING:
                    logger.debug("Not synchronizing while %s", state.value)
                    while await listener.get() is not PlaybackState.PLAYING:
                        pass
                    continue

                try:
                    await self.sync_pass()
                except Exception:
                    logger.exception("Synchronization pass failed")
                await asyncio.sleep(self._settings.check_interval)

    async def sync_pass(self) -> CatchUpPlan | None:
        """
        Run one pass: measure, sort, and hold the nodes that are ahead.

        Returns the plan that was carried out, or None if nothing had to be done.
        """
        nodes = self._pool.active_nodes
        if len(nodes) < 2:
            return None

        results = await asyncio.gather(*(node.fetch_elapsed() for node in nodes))
        measured: list[NodeClient] = []
        for node, elapsed in zip(nodes, results, strict=True):
            if elapsed is None:
                logger.warning("Could not measure %s, leaving it out", node.description)
            else:
                measured.append(node)
        self._pool.sort_by_elapsed()

        plan = plan_catch_up(measured, self._settings.threshold)
        if plan is None:
            logger.debug("Not enough desync, do nothing")
            return None

        if not await self._pool.begin_sync():
            logger.info("Pool stopped playing, skipping sync")
            return None

        self._passes += 1
        try:
            logger.info(
                "%.3fs desync, syncing %d node(s) to %s",
                plan.spread,
                len(plan.holds),
                plan.reference.description,
            )
            await plan.reference.set_playing(True)
            await asyncio.gather(*(self._hold(hold) for hold in plan.holds))
        finally:
            await self._pool.end_sync()
        logger.info("Syncing finished")
        return plan

    async def _hold(self, hold: Hold) -> bool:
        """Pause a node for its delay; returns False if the pass was interrupted."""
        node = hold.node
        with self._pool.state_changes.subscribe() as listener:
            if await self._pool.get_state() is not PlaybackState.BUSY:
                return False

            logger.info("Pausing %s for %.3fs", node.description, hold.delay)
            await node.set_playing(False)

            if await self._wait_interrupted(listener, hold.delay):
                logger.info("Someone paused, interrupting sync of %s", node.description)
                return False
            # A pause fanning out right now holds the lock until every node is paused.
            if await self._pool.get_state() is not PlaybackState.BUSY:
                return False

            # A resume pressed on the node while it was held is ignored by the
            # pool; resuming again would wait for an echo Kodi never sends.
            if await node.fetch_speed() == 1:
                logger.info("%s was resumed during its hold", node.description)
                return True
            await node.set_playing(True)
            logger.info("Unpausing %s", node.description)
            return True

    @staticmethod
    async def _wait_interrupted(listener: BroadcastListener[PlaybackState], delay: float) -> bool:
        """Wait ``delay`` seconds; returns True as soon as the pool leaves the busy state."""
        try:
            async with asyncio.timeout(delay):
                while await listener.get() is PlaybackState.BUSY:
                    pass
        except TimeoutError:
            return False
        return True
