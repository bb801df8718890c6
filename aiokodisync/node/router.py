"""Deliver notifications pushed by a node to the listeners interested in them."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any

from aiokodisync.broadcast import Broadcast, BroadcastListener
from aiokodisync.models import PlayerNotification

logger = logging.getLogger(__name__)

PoolSink = Callable[["Notification"], None]
"""Non-blocking callable receiving the notifications meant for the whole pool."""


@dataclass(frozen=True)
class Notification:
    """A notification pushed by a node without any request."""

    node_name: str
    """Name of the node that sent it."""
    method: str
    """Notification method, e.g. Player.OnPause."""
    params: dict[str, Any] = field(default_factory=dict)


class NotificationRouter:
    """
    Routes the notifications of one node.

    Every notification reaches the per-node listeners. It also reaches the pool
    sink, unless the node announced that it expects this notification as the
    echo of a command the engine sent itself: such echoes are swallowed, one per
    announcement, so the pool never mistakes them for user actions.
    """

    def __init__(self, node_name: str, pool_sink: PoolSink | None = None) -> None:
        """Create a router for the node called ``node_name``."""
        self._node_name = node_name
        self._pool_sink = pool_sink
        self._events: Broadcast[Notification] = Broadcast(f"notifications of {node_name}")
        self._suppressed: Counter[str] = Counter()
        self._logger = logger.getChild(node_name)

    def set_pool_sink(self, pool_sink: PoolSink | None) -> None:
        """Replace the pool-wide receiver."""
        self._pool_sink = pool_sink

    def subscribe(self) -> AbstractContextManager[BroadcastListener[Notification]]:
        """Return a context manager yielding a per-node notification listener."""
        return self._events.subscribe()

    def suppress_next(self, method: PlayerNotification | str) -> None:
        """Swallow the next ``method`` notification instead of forwarding it to the pool."""
        key = method.value if isinstance(method, PlayerNotification) else method
        self._suppressed[key] += 1
        self._logger.debug("Expecting echo %s (%d pending)", key, self._suppressed[key])

    def pending_suppressions(self, method: PlayerNotification | str) -> int:
        """Return how many ``method`` notifications will still be swallowed."""
        key = method.value if isinstance(method, PlayerNotification) else method
        return self._suppressed[key]

    def release_suppression(self, method: PlayerNotification | str) -> None:
        """Take back one suppress_next() whose echo will never come."""
        key = method.value if isinstance(method, PlayerNotification) else method
        if self._suppressed[key] > 0:
            self._suppressed[key] -= 1

    def clear_suppressions(self) -> None:
        """Forget every expected echo."""
        self._suppressed.clear()

    def dispatch(self, method: str, params: dict[str, Any] | None = None) -> Notification:
        """Route one notification; never blocks."""
        notification = Notification(self._node_name, method, params or {})
        if method == PlayerNotification.ON_PAUSE.value:
            self._logger.info("Paused %s", self._node_name)
        elif method == PlayerNotification.ON_RESUME.value:
            self._logger.info("Resumed %s", self._node_name)
        else:
            self._logger.debug("Notification %s", method)

        self._events.publish(notification)

        if self._suppressed[method] > 0:
            self._suppressed[method] -= 1
            self._logger.debug("Swallowed own echo %s", method)
            return notification
        if self._pool_sink is not None:
            self._pool_sink(notification)
        return notification

