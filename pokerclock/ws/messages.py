"""Message envelope for the clock socket."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pokerclock.ws.events import EventType


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


@dataclass(frozen=True)
class MessageEnvelope:
    """``{type, ts, traceId, payload}`` wrapper for every socket message."""

    type: EventType
    ts: int  # Unix timestamp in milliseconds
    trace_id: str
    payload: dict[str, Any]
    request_id: str | None = None

    @classmethod
    def create(
        cls,
        event_type: EventType,
        payload: dict[str, Any],
        request_id: str | None = None,
        trace_id: str | None = None,
    ) -> MessageEnvelope:
        return cls(
            type=event_type,
            ts=_now_ms(),
            trace_id=trace_id or str(uuid.uuid4()),
            payload=payload,
            request_id=request_id,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageEnvelope:
        """Parse an incoming message.

        Raises:
            ValueError: unknown ``type``
            KeyError: missing ``type``
        """
        payload = data.get("payload")
        return cls(
            type=EventType(data["type"]),
            ts=data.get("ts", _now_ms()),
            trace_id=data.get("traceId") or str(uuid.uuid4()),
            payload=payload if isinstance(payload, dict) else {},
            request_id=data.get("requestId"),
        )

    def to_dict(self) -> dict[str, Any]:
        result = {
            "type": self.type.value,
            "ts": self.ts,
            "traceId": self.trace_id,
            "payload": self.payload,
        }
        if self.request_id:
            result["requestId"] = self.request_id
        return result


@dataclass
class ErrorPayload:
    """``error`` event payload; ``message`` is what viewers display."""

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "errorCode": self.error_code,
            "details": self.details,
        }


def create_error_message(
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
    trace_id: str | None = None,
) -> MessageEnvelope:
    return MessageEnvelope.create(
        event_type=EventType.ERROR,
        payload=ErrorPayload(
            error_code=error_code,
            message=message,
            details=details or {},
        ).to_dict(),
        request_id=request_id,
        trace_id=trace_id,
    )
