"""ASGI middleware for request metrics and access logs."""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from relay.obs import metrics

logger = logging.getLogger("relay.http")


def _route_template(request: Request) -> str:
	route = request.scope.get("route")
	if route and getattr(route, "path", None):
		return route.path  # type: ignore[return-value]
	return request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	"""Record latency and status for every HTTP request."""

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		start = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
			return response
		except Exception:
			logger.exception("http_request_error", extra={"path": request.url.path})
			raise
		finally:
			elapsed = time.perf_counter() - start
			route = _route_template(request)
			metrics.observe_request(route, request.method, status_code, elapsed)
			logger.info(
				"http_request",
				extra={
					"route": route,
					"method": request.method,
					"status": status_code,
					"duration_ms": round(elapsed * 1000, 2),
				},
			)


def install(app: FastAPI) -> None:
	app.add_middleware(ObservabilityMiddleware)
