"""Operations endpoints: health probes and Prometheus exposition."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from relay.infra import postgres
from relay.infra import redis as relay_redis
from relay.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ops"])


async def _postgres_ok(timeout: float = 0.3) -> bool:
	if settings.store_backend != "postgres":
		return True
	try:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
		return True
	except Exception:
		logger.warning("postgres readiness check failed", exc_info=True)
		return False


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok"}


@router.get("/health/ready")
async def health_ready() -> Response:
	checks = {"redis": await relay_redis.ping(), "postgres": await _postgres_ok()}
	status_code = 200 if all(checks.values()) else 503
	return JSONResponse(content={"status": "ok" if status_code == 200 else "degraded", "checks": checks}, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
