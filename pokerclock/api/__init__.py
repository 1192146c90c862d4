"""API routers."""

from pokerclock.api.clock import router as clock_router

__all__ = ["clock_router"]
