"""JSON utilities using orjson.

Clock snapshots carry timezone-aware datetimes; orjson renders UTC offsets
as ``Z`` so wire timestamps look like ``2024-05-01T12:00:00Z``.

Usage:
    from pokerclock.utils.json_utils import json_dumps, json_loads, ORJSONResponse
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import orjson
from fastapi.responses import JSONResponse

_OPTIONS = orjson.OPT_UTC_Z | orjson.OPT_NON_STR_KEYS


def _default_serializer(obj: Any) -> Any:
    """Serializer for types not natively supported by orjson."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(data: Any, *, pretty: bool = False) -> str:
    """Serialize data to a JSON string."""
    options = _OPTIONS
    if pretty:
        options |= orjson.OPT_INDENT_2
    return orjson.dumps(data, default=_default_serializer, option=options).decode("utf-8")


def json_dumps_bytes(data: Any) -> bytes:
    """Serialize data to JSON bytes (Redis pub/sub payloads)."""
    return orjson.dumps(data, default=_default_serializer, option=_OPTIONS)


def json_loads(data: str | bytes) -> Any:
    return orjson.loads(data)


class ORJSONResponse(JSONResponse):
    """FastAPI response class using orjson for serialization."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return json_dumps_bytes(content)
