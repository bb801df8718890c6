"""Shared fixtures for aiokodisync tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest_asyncio
from fake_kodi import FakeKodi

from aiokodisync.config import NodeIdentity
from aiokodisync.node import NodeClient

NodeFactory = Callable[..., NodeClient]


@pytest_asyncio.fixture
async def node_factory() -> AsyncIterator[NodeFactory]:
    """Return a factory attaching NodeClients to FakeKodi websockets."""
    nodes: list[NodeClient] = []

    def factory(kodi: FakeKodi, host: str = "kodi-1:9090", **kwargs: Any) -> NodeClient:
        node = NodeClient(NodeIdentity(host, "kodi", "secret"), **kwargs)
        node.attach(kodi)  # type: ignore[arg-type]
        nodes.append(node)
        return node

    yield factory

    for node in nodes:
        await node.disconnect()
