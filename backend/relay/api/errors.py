"""Global error handlers mapping domain errors to JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from relay.domain.errors import AuthenticationFailure, RelayError, StorageFailure

logger = logging.getLogger(__name__)


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(RelayError)
	async def relay_exc_handler(request: Request, exc: RelayError):  # type: ignore[override]
		if isinstance(exc, StorageFailure):
			logger.warning("storage failure on %s", request.url.path)
		payload = {"detail": exc.kind, "message": exc.detail}
		headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationFailure) else None
		return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		payload = {"detail": "validation_failed", "errors": exc.errors()}
		return JSONResponse(status_code=422, content=payload)
