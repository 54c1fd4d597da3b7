"""Shared Redis handle for the relay.

Redis only backs the per-user send and typing budgets plus the readiness probe,
so a single module-level proxy is enough. Tests swap the underlying client for
fakeredis through ``set_redis_client`` while modules that already imported
``redis_client`` keep working.
"""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from relay.settings import settings

logger = logging.getLogger(__name__)


class RedisProxy:
	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def ping(timeout: float = 0.2) -> bool:
	"""Readiness probe; False when Redis is unreachable or slow."""
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except (RedisError, OSError, asyncio.TimeoutError):
		logger.warning("redis ping failed", exc_info=True)
		return False
	return True


async def close_redis() -> None:
	await redis_client.aclose()
