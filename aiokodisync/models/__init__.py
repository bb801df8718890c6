"""Models for the Kodi JSON-RPC protocol."""

from __future__ import annotations

__all__ = [
    "DEFAULT_PLAYER_ID",
    "GetPropertiesParams",
    "Operation",
    "PlayPauseParams",
    "PlaybackState",
    "PlayerMethod",
    "PlayerNotification",
    "PlayerPropertiesResult",
    "PlayerTime",
    "RpcError",
    "RpcMessage",
    "RpcRequest",
    "player",
    "rpc",
    "types",
]

from . import player, rpc, types
from .player import GetPropertiesParams, PlayerPropertiesResult, PlayerTime, PlayPauseParams
from .rpc import RpcError, RpcMessage, RpcRequest
from .types import (
    DEFAULT_PLAYER_ID,
    Operation,
    PlaybackState,
    PlayerMethod,
    PlayerNotification,
)
