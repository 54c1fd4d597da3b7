"""Authentication helpers for REST endpoints and socket handshakes.

Bearer JWTs are verified once per connection or request. In development the
``X-User-Id`` header (or ``userId`` in the socket auth payload) is accepted as
a stand-in for local tools.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from relay.domain.errors import AuthenticationFailure
from relay.infra import jwt as jwt_helper
from relay.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	handle: Optional[str] = None
	display_name: Optional[str] = None
	session_id: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		claims = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise AuthenticationFailure("invalid_token") from None
	return AuthenticatedUser(
		id=claims.user_id,
		handle=claims.handle,
		display_name=claims.display_name,
		session_id=claims.session_id,
	)


def _header(scope: Mapping, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def authenticate_handshake(environ: Mapping, auth: Optional[Mapping] = None) -> AuthenticatedUser:
	"""Resolve the user behind a Socket.IO handshake.

	The bearer credential is read from ``auth.token`` first, then from the
	``Authorization`` header. Raises AuthenticationFailure when neither yields
	a valid token.
	"""
	scope = environ.get("asgi.scope", environ)
	auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
	token = auth_payload.get("token")
	if not token:
		auth_header = _header(scope, "authorization")
		if auth_header and auth_header.lower().startswith("bearer "):
			token = auth_header.split(" ", 1)[1].strip()
	if token:
		return verify_access_jwt(str(token))
	if settings.is_dev():
		user_id = auth_payload.get("userId") or auth_payload.get("user_id") or _header(scope, "x-user-id")
		if user_id:
			return AuthenticatedUser(id=str(user_id))
	raise AuthenticationFailure("missing_token")


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user for REST endpoints."""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id)
	raise AuthenticationFailure("invalid_token")
