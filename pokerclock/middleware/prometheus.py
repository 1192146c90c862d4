"""Prometheus metrics middleware and clock metrics.

Features:
- HTTP request metrics (latency, count, errors)
- WebSocket connection / message metrics
- Clock metrics (reconcile results, level changes, pushes)
"""

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram, Info
from prometheus_fastapi_instrumentator import Instrumentator, metrics


# =============================================================================
# Custom Metrics
# =============================================================================

APP_INFO = Info("pokerclock_app", "Application information")

WS_CONNECTIONS_TOTAL = Gauge(
    "pokerclock_ws_connections_total",
    "Total active WebSocket connections",
)

WS_MESSAGES_SENT = Counter(
    "pokerclock_ws_messages_sent_total",
    "Total WebSocket messages sent",
    ["message_type"],
)

WS_MESSAGES_RECEIVED = Counter(
    "pokerclock_ws_messages_received_total",
    "Total WebSocket messages received",
    ["message_type"],
)

CLOCK_RECONCILE_TOTAL = Counter(
    "pokerclock_clock_reconcile_total",
    "Reconcile attempts per tournament by outcome",
    ["result"],  # updated, unchanged, skipped_paused, skipped_threshold, no_clock, failed
)

CLOCK_LEVEL_CHANGES = Counter(
    "pokerclock_clock_level_changes_total",
    "Level changes applied",
    ["source"],  # reconcile, manual
)

CLOCK_COMMANDS = Counter(
    "pokerclock_clock_commands_total",
    "Clock commands by type and outcome",
    ["command", "result"],
)

CLOCK_SYNC_DURATION = Histogram(
    "pokerclock_clock_sync_duration_seconds",
    "Duration of one reconciliation pass over all active tournaments",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

ACTIVE_CLOCKS = Gauge(
    "pokerclock_active_tournaments",
    "Active tournaments seen by the last reconciliation pass",
)


# =============================================================================
# Instrumentator Setup
# =============================================================================

def setup_prometheus(app: FastAPI, app_version: str = "0.1.0") -> Instrumentator:
    """Setup Prometheus instrumentation and expose ``/metrics``."""
    APP_INFO.info({
        "version": app_version,
        "app_name": "pokerclock",
    })

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/metrics"],
        inprogress_name="pokerclock_http_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.add(
        metrics.default(
            metric_namespace="pokerclock",
            metric_subsystem="http",
        )
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint="/metrics", include_in_schema=True, tags=["Monitoring"])

    return instrumentator


# =============================================================================
# Metric Helper Functions
# =============================================================================

def record_ws_connection(connected: bool) -> None:
    if connected:
        WS_CONNECTIONS_TOTAL.inc()
    else:
        WS_CONNECTIONS_TOTAL.dec()


def record_ws_message_sent(message_type: str) -> None:
    WS_MESSAGES_SENT.labels(message_type=message_type).inc()


def record_ws_message_received(message_type: str) -> None:
    WS_MESSAGES_RECEIVED.labels(message_type=message_type).inc()


def record_reconcile(result: str) -> None:
    CLOCK_RECONCILE_TOTAL.labels(result=result).inc()


def record_level_changes(count: int, source: str) -> None:
    if count > 0:
        CLOCK_LEVEL_CHANGES.labels(source=source).inc(count)


def record_clock_command(command: str, result: str) -> None:
    CLOCK_COMMANDS.labels(command=command, result=result).inc()


def record_sync_pass(duration_seconds: float, active_tournaments: int) -> None:
    CLOCK_SYNC_DURATION.observe(duration_seconds)
    ACTIVE_CLOCKS.set(active_tournaments)
