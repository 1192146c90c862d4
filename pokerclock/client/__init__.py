"""Viewer-side helpers: display adapter and HTTP polling client."""

from pokerclock.client.display import ClockDisplay, format_seconds
from pokerclock.client.poller import ClockApiClient, ClockApiError, ClockPoller

__all__ = [
    "ClockApiClient",
    "ClockApiError",
    "ClockDisplay",
    "ClockPoller",
    "format_seconds",
]
