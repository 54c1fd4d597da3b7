"""HS256 access tokens presented on REST requests and socket handshakes.

Only the claims the relay reads are modelled: ``sub`` plus the optional
``handle``, ``name`` and ``sid`` (login session) values.
"""

from __future__ import annotations

import time
from typing import Any, Dict, NamedTuple, Optional

import jwt
from jwt import InvalidTokenError

from relay.settings import settings

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 3600
REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


class AccessClaims(NamedTuple):
    user_id: str
    handle: Optional[str]
    display_name: Optional[str]
    session_id: Optional[str]


def _optional(payload: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def encode_access(
    user_id: str,
    *,
    handle: Optional[str] = None,
    display_name: Optional[str] = None,
    session_id: Optional[str] = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> str:
    now = int(time.time())
    body: Dict[str, Any] = {
        "sub": user_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    for key, value in (("handle", handle), ("name", display_name), ("sid", session_id)):
        if value is not None:
            body[key] = value
    return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> AccessClaims:
    """Validate signature, issuer, audience and expiry.

    Raises jwt.InvalidTokenError subclasses on failure, including a blank ``sub``.
    """
    payload = jwt.decode(
        token,
        settings.secret_key,
        algorithms=[ALGORITHM],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        leeway=5,
        options={"require": REQUIRED_CLAIMS},
    )
    user_id = _optional(payload, "sub")
    if user_id is None:
        raise InvalidTokenError("missing_claim:sub")
    return AccessClaims(
        user_id=user_id,
        handle=_optional(payload, "handle", "username"),
        display_name=_optional(payload, "name", "display_name"),
        session_id=_optional(payload, "sid"),
    )
