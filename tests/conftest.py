"""Shared fixtures: a bridge listening on an ephemeral port and a fake app."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest_asyncio  # type: ignore[import-not-found]

from fake_app import FakeApp
from ui_introspect_mcp.client import IntrospectionClient
from ui_introspect_mcp.connection import ConnectionManager
from ui_introspect_mcp.dispatcher import ToolDispatcher

TEST_TIMEOUT = 0.5


@pytest_asyncio.fixture
async def connection() -> AsyncIterator[ConnectionManager]:
    manager = ConnectionManager(host="127.0.0.1", port=0, timeout=TEST_TIMEOUT)
    await manager.start()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def app(connection: ConnectionManager) -> AsyncIterator[FakeApp]:
    fake = FakeApp()
    await fake.attach(connection.port)
    yield fake
    await fake.detach()


@pytest_asyncio.fixture
async def client(connection: ConnectionManager) -> IntrospectionClient:
    return IntrospectionClient(connection)


@pytest_asyncio.fixture
async def dispatcher(client: IntrospectionClient) -> ToolDispatcher:
    return ToolDispatcher(client)
