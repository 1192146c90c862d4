"""WebSocket event handlers."""

from pokerclock.ws.handlers.base import BaseHandler
from pokerclock.ws.handlers.clock import ClockHandler
from pokerclock.ws.handlers.system import SystemHandler

__all__ = ["BaseHandler", "ClockHandler", "SystemHandler"]
