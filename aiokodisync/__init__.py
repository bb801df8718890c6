"""aiokodisync: keep several Kodi players in sync over JSON-RPC."""

from __future__ import annotations

from aiokodisync.broadcast import Broadcast, BroadcastListener
from aiokodisync.config import NodeIdentity, SyncSettings, load_identities, parse_identities
from aiokodisync.models import Operation, PlaybackState, PlayerNotification
from aiokodisync.node import Correlator, NodeClient, Notification, NotificationRouter
from aiokodisync.pool import NodePool, PoolEvent, next_state
from aiokodisync.sync import CatchUpPlan, Hold, Synchronizer, plan_catch_up

__all__ = [
    "Broadcast",
    "BroadcastListener",
    "CatchUpPlan",
    "Correlator",
    "Hold",
    "NodeClient",
    "NodeIdentity",
    "NodePool",
    "Notification",
    "NotificationRouter",
    "Operation",
    "PlaybackState",
    "PlayerNotification",
    "PoolEvent",
    "SyncSettings",
    "Synchronizer",
    "load_identities",
    "next_state",
    "parse_identities",
    "plan_catch_up",
]
