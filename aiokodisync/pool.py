"""Coordinates a pool of Kodi nodes around one global playback state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from contextlib import suppress
from enum import Enum

from aiohttp import ClientError, ClientSession

from .broadcast import Broadcast
from .config import NodeIdentity, SyncSettings
from .models import PlaybackState, PlayerNotification
from .node import NodeClient, Notification
from .sync import Synchronizer

logger = logging.getLogger(__name__)


class PoolEvent(Enum):
    """Events that may move the pool to another state."""

    START = "start"
    """The engine starts and plays every node."""
    PAUSE = "pause"
    """A node reported a pause, or the user asked to pause."""
    RESUME = "resume"
    """A node reported a resume, or the user asked to resume."""
    SYNC_STARTED = "sync_started"
    """A synchronization pass found a desync and starts issuing commands."""
    SYNC_FINISHED = "sync_finished"
    """A synchronization pass ended."""


def next_state(
    current: PlaybackState, event: PoolEvent
) -> tuple[PlaybackState, bool | None] | None:
    """
    Return the state ``event`` leads to and the command to fan out to every node.

    The command is True to play every node, False to pause them and None to
    leave them alone. Returns None when ``event`` does not apply to ``current``.
    """
    match current, event:
        case _, PoolEvent.START:
            return PlaybackState.PLAYING, True
        case PlaybackState.PLAYING | PlaybackState.BUSY, PoolEvent.PAUSE:
            return PlaybackState.PAUSED, False
        case PlaybackState.PAUSED, PoolEvent.RESUME:
            return PlaybackState.PLAYING, True
        case PlaybackState.PLAYING, PoolEvent.SYNC_STARTED:
            return PlaybackState.BUSY, None
        case PlaybackState.BUSY, PoolEvent.SYNC_FINISHED:
            return PlaybackState.PLAYING, None
        case _:
            return None


class NodePool:
    """
    The set of managed nodes plus their shared playback state.

    Every state change goes through a single entry point holding the state
    lock, fans the resulting play/pause command out to every connected node,
    waits for all of them and only then publishes the new state on
    ``state_changes``.
    """

    _nodes: list[NodeClient]
    """Managed nodes, sorted by elapsed time after each synchronization pass."""
    _state: PlaybackState
    """Global playback state, only read and written while holding ``_lock``."""
    _lock: asyncio.Lock
    _state_changes: Broadcast[PlaybackState]
    _notifications: asyncio.Queue[Notification]
    """Notifications forwarded by the nodes, consumed by the listener task."""
    _listener_task: asyncio.Task[None] | None = None
    _sync_task: asyncio.Task[None] | None = None

    def __init__(
        self,
        settings: SyncSettings | None = None,
        nodes: Iterable[NodeClient] = (),
    ) -> None:
        """Create a pool, initially playing, with the given nodes."""
        self._settings = settings or SyncSettings()
        self._nodes = []
        self._state = PlaybackState.PLAYING
        self._lock = asyncio.Lock()
        self._state_changes = Broadcast("pool state")
        self._notifications = asyncio.Queue()
        self._synchronizer = Synchronizer(self, self._settings)
        for node in nodes:
            self.add_node(node)

    @property
    def settings(self) -> SyncSettings:
        """Return the tunables of this pool."""
        return self._settings

    @property
    def nodes(self) -> list[NodeClient]:
        """Return every managed node, in the order of the last synchronization pass."""
        return self._nodes

    @property
    def active_nodes(self) -> list[NodeClient]:
        """Return the nodes whose connection is open."""
        return [node for node in self._nodes if node.connected]

    @property
    def unreachable_nodes(self) -> list[NodeClient]:
        """Return the nodes whose connection was lost."""
        return [node for node in self._nodes if node.lost]

    @property
    def state_changes(self) -> Broadcast[PlaybackState]:
        """Return the broadcast publishing every new state."""
        return self._state_changes

    @property
    def synchronizer(self) -> Synchronizer:
        """Return the synchronizer driving catch-up passes."""
        return self._synchronizer

    def add_node(self, node: NodeClient) -> None:
        """Manage ``node`` and receive its notifications."""
        node.notifications.set_pool_sink(self._notifications.put_nowait)
        self._nodes.append(node)

    def remove_node(self, node: NodeClient) -> None:
        """Stop managing ``node``."""
        if node in self._nodes:
            self._nodes.remove(node)
            node.notifications.set_pool_sink(None)

    def sort_by_elapsed(self) -> None:
        """Order the nodes from most behind to most ahead, unmeasured ones last."""
        self._nodes.sort(key=lambda node: (node.elapsed is None, node.elapsed or 0.0))

    async def connect(
        self,
        identities: Iterable[NodeIdentity],
        *,
        session: ClientSession | None = None,
    ) -> list[NodeClient]:
        """
        Connect to every identity concurrently and manage the nodes that succeed.

        Nodes failing to connect are logged and left out. Returns the nodes added.
        """
        candidates = [
            NodeClient(
                identity,
                player_id=self._settings.player_id,
                request_timeout=self._settings.request_timeout,
                session=session,
            )
            for identity in identities
        ]
        results = await asyncio.gather(
            *(node.connect(self._settings.connect_timeout) for node in candidates),
            return_exceptions=True,
        )
        added: list[NodeClient] = []
        for node, result in zip(candidates, results, strict=True):
            if isinstance(result, (ClientError, OSError, TimeoutError)):
                logger.warning("Could not connect to %s: %s", node.description, result)
                continue
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error connecting to %s", node.description, exc_info=result
                )
                continue
            self.add_node(node)
            added.append(node)
        return added

    async def get_state(self) -> PlaybackState:
        """Return the global state once no transition is in progress."""
        async with self._lock:
            return self._state

    async def prime(self) -> None:
        """Measure every node, play them all and give them time to settle."""
        nodes = self.active_nodes
        await asyncio.gather(*(node.fetch_speed() for node in nodes))
        await self._apply(PoolEvent.START)
        if self._settings.settle_delay > 0:
            await asyncio.sleep(self._settings.settle_delay)

    async def handle_notification(self, notification: Notification) -> PlaybackState:
        """Turn a pause/resume reported by a node into a global pause/resume."""
        if notification.method == PlayerNotification.ON_PAUSE.value:
            logger.info("Trigger global pause from %s", notification.node_name)
            return await self._apply(PoolEvent.PAUSE, origin=notification.node_name)
        if notification.method == PlayerNotification.ON_RESUME.value:
            logger.info("Trigger global resume from %s", notification.node_name)
            return await self._apply(PoolEvent.RESUME, origin=notification.node_name)
        return await self.get_state()

    async def request_pause(self) -> PlaybackState:
        """Pause every node."""
        return await self._apply(PoolEvent.PAUSE)

    async def request_resume(self) -> PlaybackState:
        """Resume every node."""
        return await self._apply(PoolEvent.RESUME)

    async def begin_sync(self) -> bool:
        """Enter the busy state; returns False if the pool was not playing."""
        _, applied = await self._transition(PoolEvent.SYNC_STARTED)
        return applied

    async def end_sync(self) -> PlaybackState:
        """Leave the busy state, unless a pause already ended it."""
        return await self._apply(PoolEvent.SYNC_FINISHED)

    async def start(self) -> None:
        """Start listening for notifications and synchronizing."""
        loop = asyncio.get_running_loop()
        if self._listener_task is None or self._listener_task.done():
            self._listener_task = loop.create_task(self._notification_loop())
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = loop.create_task(self._synchronizer.run())

    async def stop(self) -> None:
        """Stop the background tasks and disconnect every node."""
        for task in (self._sync_task, self._listener_task):
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._sync_task = None
        self._listener_task = None
        await asyncio.gather(*(node.disconnect() for node in self._nodes))

    async def _apply(self, event: PoolEvent, origin: str | None = None) -> PlaybackState:
        """Apply ``event`` and return the resulting state."""
        state, _ = await self._transition(event, origin)
        return state

    async def _transition(
        self, event: PoolEvent, origin: str | None = None
    ) -> tuple[PlaybackState, bool]:
        """
        Apply ``event`` to the state; the single place where the state changes.

        Returns the resulting state and whether ``event`` changed it.
        """
        async with self._lock:
            transition = next_state(self._state, event)
            if transition is None:
                logger.debug("Ignoring %s while %s", event.value, self._state.value)
                return self._state, False
            target, command = transition
            logger.info("Pool state %s -> %s", self._state.value, target.value)
            self._state = target
            if command is not None:
                await self._fan_out(command, origin)
            self._state_changes.publish(target)
            return target, True

    async def _fan_out(self, play: bool, origin: str | None) -> None:
        """Command every connected node and wait until all of them acknowledged."""
        nodes = self.active_nodes
        # The node that reported the change is already in the target state and
        # will not echo it.
        results = await asyncio.gather(
            *(node.set_playing(play, expect_echo=node.name != origin) for node in nodes)
        )
        for node, ok in zip(nodes, results, strict=True):
            if not ok:
                logger.warning(
                    "Failed to %s %s", "play" if play else "pause", node.description
                )

    async def _notification_loop(self) -> None:
        """Consume the notifications forwarded by every node."""
        while True:
            notification = await self._notifications.get()
            try:
                await self.handle_notification(notification)
            except Exception:
                logger.exception("Error handling %s", notification)
