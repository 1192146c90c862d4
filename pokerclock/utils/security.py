"""JWT verification for clock viewers.

Tokens are issued by the external identity provider; this service only
verifies them and derives a ``Viewer`` (user id + admin flag).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from pokerclock.clock.models import Viewer
from pokerclock.config import get_settings

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Token validation error with specific code."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def create_access_token(
    user_id: str,
    is_admin: bool = False,
    expires_delta: timedelta | None = None,
) -> str:
    """Create an access token (used by tools and tests; production tokens come from the IdP)."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "access",
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=30)),
        settings.jwt_admin_claim: is_admin,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> dict[str, Any] | None:
    """Verify an access token and return its payload.

    Returns:
        Token payload if valid, None otherwise

    Raises:
        TokenError: If the token is expired
    """
    if not token:
        logger.debug("Access token verification failed: empty token")
        return None

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Access token verification failed: token expired")
        raise TokenError("TOKEN_EXPIRED", "Token has expired")
    except jwt.JWTClaimsError as e:
        logger.debug(f"Access token verification failed: invalid claims - {e}")
        return None
    except JWTError as e:
        logger.warning(f"Access token verification failed: {type(e).__name__}")
        return None

    token_type = payload.get("type")
    if token_type is not None and token_type != "access":
        logger.debug("Access token verification failed: wrong token type")
        return None

    return payload


def viewer_from_payload(payload: dict[str, Any]) -> Viewer:
    settings = get_settings()
    return Viewer(
        user_id=str(payload["sub"]),
        is_admin=bool(payload.get(settings.jwt_admin_claim, False)),
    )


def viewer_from_token(token: str) -> Viewer | None:
    """Resolve a bearer token to a viewer, or None when it does not verify."""
    try:
        payload = verify_access_token(token)
    except TokenError:
        return None
    if not payload or not payload.get("sub"):
        return None
    return viewer_from_payload(payload)
