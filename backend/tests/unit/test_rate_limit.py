import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from relay.domain.errors import RateLimited
from relay.infra import rate_limit
from relay.infra.rate_limit import allow, enforce, window_key


@pytest.mark.asyncio
async def test_rate_limit_allows_within_budget():
    assert await allow("chat_send", "u5", limit=2, window_seconds=60)
    assert await allow("chat_send", "u5", limit=2, window_seconds=60)


@pytest.mark.asyncio
async def test_rate_limit_blocks_when_budget_exhausted():
    await allow("chat_typing", "u6", limit=1, window_seconds=60)
    assert not await allow("chat_typing", "u6", limit=1, window_seconds=60)


@pytest.mark.asyncio
async def test_rate_limit_budget_is_per_actor():
    await allow("chat_send", "u7", limit=1, window_seconds=60)
    assert await allow("chat_send", "u8", limit=1, window_seconds=60)


@pytest.mark.asyncio
async def test_zero_limit_always_blocks():
    assert not await allow("chat_send", "u9", limit=0)


def test_window_key_rolls_over_per_window():
    first = window_key("chat_send", "u1", window_seconds=60, now=119.0)
    second = window_key("chat_send", "u1", window_seconds=60, now=120.0)

    assert first == "relay:rl:chat_send:u1:60:1"
    assert second == "relay:rl:chat_send:u1:60:2"


@pytest.mark.asyncio
async def test_enforce_raises_when_budget_spent():
    await enforce("chat_send", "u10", limit=1)

    with pytest.raises(RateLimited):
        await enforce("chat_send", "u10", limit=1)


@pytest.mark.asyncio
async def test_enforce_fails_open_without_redis(monkeypatch):
    async def broken(*args, **kwargs):
        raise RedisConnectionError("down")

    monkeypatch.setattr(rate_limit, "allow", broken)

    await enforce("chat_send", "u11", limit=1)
