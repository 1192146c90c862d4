"""Base handler interface for WebSocket events."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from pokerclock.ws.connection import WebSocketConnection
from pokerclock.ws.events import EventType
from pokerclock.ws.messages import MessageEnvelope

if TYPE_CHECKING:
    from pokerclock.ws.manager import ConnectionManager


class BaseHandler(ABC):
    """Base class for event handlers.

    Each handler owns a group of related events. The gateway routes an
    incoming envelope to the handler and sends back whatever it returns.
    """

    def __init__(self, manager: "ConnectionManager"):
        self.manager = manager

    @property
    @abstractmethod
    def handled_events(self) -> tuple[EventType, ...]:
        ...

    @abstractmethod
    async def handle(
        self,
        conn: WebSocketConnection,
        event: MessageEnvelope,
    ) -> MessageEnvelope | None:
        """Handle an event; return a reply for the sender or None."""
        ...

    def can_handle(self, event_type: EventType) -> bool:
        return event_type in self.handled_events
