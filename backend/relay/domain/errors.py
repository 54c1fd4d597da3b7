"""Error taxonomy shared by the chat and notification domains.

Every error carries a stable ``kind`` string. Socket gateways send it back to
the originating connection as a scoped ``error`` event, REST routers map it to
``status_code``.
"""

from __future__ import annotations


class RelayError(Exception):
	"""Base class for errors surfaced to clients."""

	kind: str = "error"
	status_code: int = 400
	detail: str = "error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail

	def to_payload(self, action: str | None = None) -> dict:
		payload = {"kind": self.kind, "detail": self.detail}
		if action:
			payload["action"] = action
		return payload


class AuthenticationFailure(RelayError):
	"""Missing or invalid bearer credential. Terminates a connection."""

	kind = "unauthorized"
	status_code = 401
	detail = "invalid_token"


class Forbidden(RelayError):
	"""Caller is not a participant or not the owner of the resource."""

	kind = "forbidden"
	status_code = 403
	detail = "forbidden"


class NotFound(RelayError):
	kind = "not_found"
	status_code = 404
	detail = "not_found"


class ValidationFailure(RelayError):
	"""Malformed inbound event or request."""

	kind = "validation_failed"
	status_code = 422
	detail = "validation_failed"


class StorageFailure(RelayError):
	"""Message store unavailable. Not retried automatically."""

	kind = "storage_unavailable"
	status_code = 503
	detail = "storage_unavailable"


class RateLimited(RelayError):
	kind = "rate_limited"
	status_code = 429
	detail = "rate_limited"
