from unittest.mock import AsyncMock

import pytest

from relay.realtime.connection import ConnectionHandle
from relay.realtime.presence import PresenceRegistry


def _handle(sid: str) -> ConnectionHandle:
    return ConnectionHandle(sid, "/chat", AsyncMock())


@pytest.mark.asyncio
async def test_register_and_lookup():
    registry = PresenceRegistry("/chat")
    handle = _handle("sid-1")

    previous = await registry.register("user-a", handle)

    assert previous is None
    assert await registry.lookup("user-a") is handle
    assert await registry.is_online("user-a")
    assert not await registry.is_online("user-b")


@pytest.mark.asyncio
async def test_register_returns_replaced_handle():
    registry = PresenceRegistry("/chat")
    first = _handle("sid-1")
    second = _handle("sid-2")

    await registry.register("user-a", first)
    previous = await registry.register("user-a", second)

    assert previous is first
    assert await registry.lookup("user-a") is second


@pytest.mark.asyncio
async def test_registering_same_handle_twice_is_not_a_replacement():
    registry = PresenceRegistry("/chat")
    handle = _handle("sid-1")

    await registry.register("user-a", handle)
    assert await registry.register("user-a", handle) is None


@pytest.mark.asyncio
async def test_stale_unregister_keeps_newer_connection():
    registry = PresenceRegistry("/chat")
    old = _handle("sid-1")
    new = _handle("sid-2")
    await registry.register("user-a", old)
    await registry.register("user-a", new)

    assert not await registry.unregister("user-a", old)
    assert await registry.lookup("user-a") is new

    assert await registry.unregister("user-a", new)
    assert await registry.lookup("user-a") is None
    assert await registry.online_user_ids() == []
