"""FastAPI application entry point.

Tournament clock service: authoritative level/countdown state per
tournament, corrected on read, advanced by a background reconciliation
driver and pushed to viewers over WebSocket.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pokerclock import __version__
from pokerclock.api import clock as clock_api
from pokerclock.api.deps import ClockRuntime
from pokerclock.clock.broadcaster import ClockBroadcaster
from pokerclock.clock.driver import ReconciliationDriver
from pokerclock.clock.models import ClockPolicy
from pokerclock.clock.service import ClockService
from pokerclock.clock.store import SqlClockStore
from pokerclock.config import Settings, get_settings
from pokerclock.logging_config import configure_logging, get_logger
from pokerclock.middleware.prometheus import setup_prometheus
from pokerclock.middleware.sentry import init_sentry
from pokerclock.utils import db as db_module
from pokerclock.utils.errors import ClockError, ErrorCode
from pokerclock.utils.json_utils import ORJSONResponse
from pokerclock.utils.redis_client import close_redis, get_redis_client, init_redis
from pokerclock.ws.gateway import router as ws_router
from pokerclock.ws.manager import ConnectionManager

logger = get_logger(__name__)


# =============================================================================
# Runtime wiring
# =============================================================================


def build_runtime(
    settings: Settings,
    redis: Redis,
    session_factory: async_sessionmaker[AsyncSession],
) -> ClockRuntime:
    """Assemble store, service, broadcaster and drivers from settings."""
    manager = ConnectionManager(redis, max_connections=settings.ws_max_connections)
    broadcaster = ClockBroadcaster(manager)
    store = SqlClockStore(session_factory)
    service = ClockService(
        store,
        broadcaster,
        ClockPolicy.from_settings(settings),
        write_retries=settings.clock_write_retries,
    )

    driver = ReconciliationDriver(
        service,
        store,
        interval_seconds=settings.clock_sync_interval_seconds,
        operation_timeout_seconds=settings.clock_operation_timeout_seconds,
        name="main",
    )
    fast_driver = None
    if settings.clock_fast_sync_enabled:
        # 빠른 경로: 주기와 임계값이 같음 (1초)
        interval = settings.clock_fast_sync_interval_seconds
        fast_driver = ReconciliationDriver(
            service,
            store,
            interval_seconds=interval,
            min_elapsed_seconds=max(1, int(interval)),
            operation_timeout_seconds=min(settings.clock_operation_timeout_seconds, interval * 5),
            name="fast",
        )

    return ClockRuntime(
        service=service,
        broadcaster=broadcaster,
        manager=manager,
        driver=driver,
        fast_driver=fast_driver,
    )


# =============================================================================
# Lifespan Events
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    settings = get_settings()
    logger.info("app_starting", env=settings.app_env, version=__version__)

    session_factory = await db_module.init_db(create_tables=settings.db_auto_create)
    logger.info("database_connected")

    redis = await init_redis()
    logger.info("redis_connected")

    runtime = build_runtime(settings, redis, session_factory)
    await runtime.manager.start()
    app.state.clock_runtime = runtime

    if settings.clock_driver_enabled:
        for driver in runtime.drivers:
            await driver.start()
    else:
        logger.info("clock_driver_disabled")

    logger.info("app_started")
    try:
        yield
    finally:
        logger.info("app_stopping")
        for driver in reversed(runtime.drivers):
            await driver.stop()
        await runtime.manager.stop()
        await close_redis()
        await db_module.close_db()
        logger.info("app_stopped")


# =============================================================================
# Error Handlers
# =============================================================================


def get_request_id(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    return trace_id or request.headers.get("X-Request-ID") or str(uuid.uuid4())


async def clock_error_handler(request: Request, exc: ClockError) -> ORJSONResponse:
    """Render ClockError as ``{success: false, error, errorCode, details}``."""
    trace_id = get_request_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "clock_error",
        code=exc.code,
        message=exc.message,
        path=request.url.path,
        trace_id=trace_id,
    )
    return ORJSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "errorCode": exc.code,
            "details": exc.details,
            "traceId": trace_id,
        },
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "Invalid request",
            "errorCode": ErrorCode.INVALID_REQUEST.value,
            "details": {"errors": errors},
            "traceId": get_request_id(request),
        },
    )


# =============================================================================
# Health
# =============================================================================


async def health_check() -> dict[str, Any]:
    """Check application health status (database + Redis)."""
    health_status: dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "services": {
            "database": "unknown",
            "redis": "unknown",
        },
    }
    overall_healthy = True

    if db_module.engine is None:
        health_status["services"]["database"] = "not initialized"
        overall_healthy = False
    else:
        try:
            async with db_module.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["services"]["database"] = "healthy"
        except Exception as e:
            health_status["services"]["database"] = f"unhealthy: {e}"
            overall_healthy = False
            logger.error("database_health_check_failed", error=str(e))

    current_redis = get_redis_client()
    if current_redis is None:
        health_status["services"]["redis"] = "not initialized"
        overall_healthy = False
    else:
        try:
            await current_redis.ping()
            health_status["services"]["redis"] = "healthy"
        except Exception as e:
            health_status["services"]["redis"] = f"unhealthy: {e}"
            overall_healthy = False
            logger.error("redis_health_check_failed", error=str(e))

    if not overall_healthy:
        health_status["status"] = "degraded"
    return health_status


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app() -> FastAPI:
    settings = get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.app_env == "production",
        app_env=settings.app_env,
    )
    if init_sentry(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        release=__version__,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    ):
        logger.info("sentry_initialized")
    elif settings.app_env == "production":
        logger.warning("sentry_dsn_missing")

    application = FastAPI(
        title="Poker Tournament Clock",
        version=__version__,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-API-Key"],
        expose_headers=["X-Request-ID"],
    )

    application.add_exception_handler(ClockError, clock_error_handler)
    application.add_exception_handler(RequestValidationError, validation_error_handler)

    application.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    application.include_router(clock_api.router)
    application.include_router(ws_router)

    setup_prometheus(application, app_version=__version__)
    return application


app = create_app()
