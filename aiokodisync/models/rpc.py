"""JSON-RPC 2.0 envelopes exchanged with Kodi.

Requests carry an ``id`` that Kodi echoes in its response. Notifications are
pushed by Kodi on its own and never carry an ``id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

JSONRPC_VERSION = "2.0"


@dataclass
class RpcRequest(DataClassORJSONMixin):
    """Request sent to a node."""

    method: str
    """Method name, e.g. Player.GetProperties."""
    id: int
    """Correlation identifier, echoed back in the response."""
    params: dict[str, Any] | None = None
    """Named parameters of the method."""
    jsonrpc: str = JSONRPC_VERSION

    class Config(BaseConfig):
        """Config for serializing json messages."""

        omit_none = True


@dataclass
class RpcError(DataClassORJSONMixin):
    """Error object of a failed request."""

    code: int
    message: str
    data: Any = None


@dataclass
class RpcMessage(DataClassORJSONMixin):
    """Any message received from a node: a response or a notification."""

    jsonrpc: str = JSONRPC_VERSION
    id: int | None = None
    """Identifier of the request this message responds to, None for notifications."""
    method: str | None = None
    """Method name, only set on notifications."""
    params: dict[str, Any] | None = None
    """Notification parameters."""
    result: Any = None
    """Result of a successful request."""
    error: RpcError | None = None
    """Error of a failed request."""

    @property
    def is_notification(self) -> bool:
        """Return True if this message was pushed without a request."""
        return self.id is None and self.method is not None

    @property
    def is_response(self) -> bool:
        """Return True if this message answers a request."""
        return self.id is not None
