"""Fixed-window budgets for chat sends and typing updates, counted in Redis."""

from __future__ import annotations

import logging
import math
import time
from typing import Optional

from redis.exceptions import RedisError

from relay.domain.errors import RateLimited
from relay.infra.redis import redis_client

logger = logging.getLogger(__name__)


def window_key(kind: str, actor_id: str, *, window_seconds: int, now: float) -> str:
	window = max(1, int(window_seconds))
	slot = int(math.floor(now / window))
	return f"relay:rl:{kind}:{actor_id}:{window}:{slot}"


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	"""Count one hit against ``actor_id``'s budget and report whether it still fits."""

	if limit <= 0:
		return False
	key = window_key(kind, actor_id, window_seconds=window_seconds, now=now or time.time())
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, max(1, int(window_seconds)))
		count, _ = await pipe.execute()
	return int(count) <= limit


async def enforce(kind: str, actor_id: str, *, limit: int, window_seconds: int = 60) -> None:
	"""Raise RateLimited once the budget is spent.

	An unreachable Redis lets the action through; losing the limiter must not
	take chat down with it.
	"""
	try:
		allowed = await allow(kind, actor_id, limit=limit, window_seconds=window_seconds)
	except RedisError:
		logger.warning("rate limiter unavailable kind=%s", kind, exc_info=True)
		return
	if not allowed:
		raise RateLimited()
