"""API dependencies for authentication and clock runtime access."""

import secrets
import uuid
from dataclasses import dataclass
from collections.abc import AsyncIterator
from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pokerclock.clock.broadcaster import ClockBroadcaster
from pokerclock.clock.driver import ReconciliationDriver
from pokerclock.clock.models import Viewer
from pokerclock.clock.service import ClockService
from pokerclock.config import get_settings
from pokerclock.logging_config import bind_context, unbind_context
from pokerclock.utils.errors import AuthenticationRequiredError, UnauthorizedError
from pokerclock.utils.security import TokenError, verify_access_token, viewer_from_payload
from pokerclock.ws.manager import ConnectionManager

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


@dataclass
class ClockRuntime:
    """Everything the routes and the socket gateway share, kept on ``app.state``."""

    service: ClockService
    broadcaster: ClockBroadcaster
    manager: ConnectionManager
    driver: ReconciliationDriver
    fast_driver: Optional[ReconciliationDriver] = None

    @property
    def drivers(self) -> list[ReconciliationDriver]:
        if self.fast_driver is None:
            return [self.driver]
        return [self.driver, self.fast_driver]


async def get_trace_id(
    request: Request,
    x_trace_id: Annotated[str | None, Header()] = None,
) -> AsyncIterator[str]:
    """Get or generate trace ID and bind it to the request's log context."""
    trace_id = x_trace_id or str(uuid.uuid4())
    request.state.trace_id = trace_id
    bind_context(trace_id=trace_id)
    try:
        yield trace_id
    finally:
        unbind_context("trace_id")


def get_runtime(request: Request) -> ClockRuntime:
    return request.app.state.clock_runtime


def get_clock_service(runtime: Annotated[ClockRuntime, Depends(get_runtime)]) -> ClockService:
    return runtime.service


def get_driver(runtime: Annotated[ClockRuntime, Depends(get_runtime)]) -> ReconciliationDriver:
    return runtime.driver


async def get_viewer_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Viewer | None:
    """Viewer from the bearer token if one was sent and verifies.

    Anonymous callers get None and may still read clocks.
    """
    if not credentials:
        return None

    try:
        payload = verify_access_token(credentials.credentials)
    except TokenError:
        return None

    if not payload or not payload.get("sub"):
        return None
    return viewer_from_payload(payload)


async def get_viewer(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Viewer:
    """Viewer from the bearer token (required auth).

    Raises:
        AuthenticationRequiredError: missing, expired or invalid token
    """
    if not credentials:
        raise AuthenticationRequiredError()

    try:
        payload = verify_access_token(credentials.credentials)
    except TokenError as e:
        raise AuthenticationRequiredError(e.message)

    if not payload or not payload.get("sub"):
        raise AuthenticationRequiredError("Invalid or expired token")
    return viewer_from_payload(payload)


async def verify_sync_caller(
    viewer: Annotated[Viewer | None, Depends(get_viewer_optional)],
    x_api_key: Annotated[str | None, Header()] = None,
) -> str:
    """Allow the sync endpoint to schedulers (``X-API-Key``) and admins.

    Returns:
        Caller label for logging
    """
    if x_api_key:
        if secrets.compare_digest(x_api_key, get_settings().internal_api_key):
            return "scheduler"
        raise AuthenticationRequiredError("Invalid API key")

    if viewer is None:
        raise AuthenticationRequiredError()
    if not viewer.is_admin:
        raise UnauthorizedError()
    return f"admin:{viewer.user_id}"


__all__ = [
    "ClockRuntime",
    "get_clock_service",
    "get_driver",
    "get_runtime",
    "get_trace_id",
    "get_viewer",
    "get_viewer_optional",
    "verify_sync_caller",
]
