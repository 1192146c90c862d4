"""Sentry error tracking integration.

Features:
- Automatic error capture (FastAPI, SQLAlchemy, Redis, logging)
- Tournament tags on clock errors
- Expected clock errors (auth, not-found) are not reported
"""

import logging
import os
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

EXPECTED_ERRORS = {
    "AuthenticationRequiredError",
    "UnauthorizedError",
    "ClockNotFoundError",
    "TournamentNotFoundError",
    "TournamentNotActiveError",
    "InvalidCommandError",
}


def init_sentry(
    dsn: str | None = None,
    environment: str = "development",
    release: str | None = None,
    traces_sample_rate: float = 0.05,
) -> bool:
    """Initialize Sentry SDK.

    Returns:
        True if Sentry was initialized, False when no DSN is configured
    """
    sentry_dsn = dsn or os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment,
        release=release or os.getenv("APP_VERSION", "0.1.0"),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=_before_send,
        before_send_transaction=_before_send_transaction,
    )
    return True


def _before_send(event: dict, hint: dict) -> dict | None:
    if "exc_info" in hint:
        exc_type, _, _ = hint["exc_info"]
        if exc_type.__name__ in EXPECTED_ERRORS:
            return None
    return event


def _before_send_transaction(event: dict, hint: dict) -> dict | None:
    transaction_name = event.get("transaction", "")
    if any(path in transaction_name for path in ["/health", "/metrics"]):
        return None
    return event


def capture_clock_error(
    error: Exception,
    tournament_id: str,
    operation: str,
    extra: dict[str, Any] | None = None,
) -> str | None:
    """Capture a clock error with tournament tags.

    Returns:
        Sentry event ID or None
    """
    with sentry_sdk.new_scope() as scope:
        scope.set_level("error")
        scope.set_tag("tournament_id", tournament_id)
        scope.set_tag("clock_operation", operation)
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(error)
