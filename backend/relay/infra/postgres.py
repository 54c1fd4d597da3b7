"""AsyncPG pool management for the backend."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from relay.domain.errors import StorageFailure
from relay.obs import metrics as obs_metrics
from relay.settings import settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.pool.Pool] = None

_STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		# Force 127.0.0.1 instead of localhost to avoid IPv6 issues on Windows
		dsn = settings.postgres_url.replace("localhost", "127.0.0.1")
		_pool = await asyncpg.create_pool(
			dsn=dsn,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


@asynccontextmanager
async def connection(store: str) -> AsyncIterator[asyncpg.Connection]:
	"""Acquire a pooled connection, translating driver failures into StorageFailure."""
	try:
		pool = await get_pool()
		async with pool.acquire() as conn:
			yield conn
	except _STORAGE_ERRORS as exc:
		obs_metrics.storage_failure(store)
		logger.warning("storage operation failed store=%s", store, exc_info=True)
		raise StorageFailure(f"{store}_unavailable") from exc


def rows_affected(status: str) -> int:
	"""Parse the row count from an asyncpg command status such as ``INSERT 0 3``."""
	try:
		return int(status.rsplit(" ", 1)[-1])
	except (AttributeError, ValueError):
		return 0
