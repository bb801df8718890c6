"""Node identities and tunables of the synchronization engine."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .models import DEFAULT_PLAYER_ID

logger = logging.getLogger(__name__)

DEFAULT_IDENTITIES_PATH = "identities.txt"
JSONRPC_PATH = "/jsonrpc"


@dataclass(frozen=True, slots=True)
class NodeIdentity:
    """How to reach and authenticate with one Kodi node."""

    host: str
    """Hostname and port, e.g. ``kodi-livingroom:9090``."""
    user: str
    password: str

    @property
    def ws_url(self) -> str:
        """Return the websocket URL of the JSON-RPC endpoint."""
        return f"ws://{self.host}{JSONRPC_PATH}"

    @property
    def description(self) -> str:
        """Return a human-friendly name for logs."""
        return f"{self.host} ({self.user})"


@dataclass(slots=True)
class SyncSettings:
    """Tunables of the engine; every field can be overridden from the CLI."""

    threshold: float = 2.0
    """Minimum spread in seconds between the most ahead and most behind node to sync."""
    check_interval: float = 2.0
    """Seconds between two synchronization passes."""
    player_id: int = DEFAULT_PLAYER_ID
    """Kodi player whose playback is synchronized."""
    request_timeout: float | None = None
    """Seconds to wait for a response before giving up, None waits forever."""
    connect_timeout: float = 10.0
    """Seconds to wait for a websocket handshake."""
    settle_delay: float = 1.0
    """Seconds to wait after starting every node before the first pass."""

    def __post_init__(self) -> None:
        """Validate the values."""
        if self.threshold <= 0:
            raise ValueError("threshold must be positive")
        if self.check_interval < 0:
            raise ValueError("check_interval must not be negative")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


def parse_identities(lines: Iterable[str]) -> list[NodeIdentity]:
    """
    Parse node identities, one ``host:port,user,password`` per line.

    Blank lines and lines starting with ``#`` are skipped. Malformed lines are
    logged and skipped.
    """
    identities: list[NodeIdentity] = []
    for lineno, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        parts = [part.strip() for part in line.split(",", 2)]
        if len(parts) != 3 or not parts[0]:
            logger.warning("Ignoring malformed identity on line %d: %r", lineno, line)
            continue
        identities.append(NodeIdentity(host=parts[0], user=parts[1], password=parts[2]))
    return identities


def load_identities(path: str | Path) -> list[NodeIdentity]:
    """Read node identities from the text file at ``path``; raises OSError if unreadable."""
    with Path(path).open(encoding="utf-8") as file:
        return parse_identities(file)
