"""Decode raw partition records into :class:`~pyreconcile.models.Event` values."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from pyreconcile.models.event import (
    DEVICE_ID_PROPERTY,
    ENQUEUED_TIME_PROPERTY,
    OFFSET_PROPERTY,
    PARTITION_ID_PROPERTY,
    Event,
)
from pyreconcile.stream.source import StreamMessage

_logger = logging.getLogger(__name__)


def _header_value(value: bytes | str | None) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def decode_body(value: bytes | None) -> dict[str, Any] | bytes:
    """Return the JSON object carried by *value*, or the raw bytes."""
    if not value:
        return b""
    try:
        parsed = json.loads(value)
    except (ValueError, RecursionError):
        return value
    if isinstance(parsed, dict):
        return parsed
    return value


def enqueued_time_of(message: StreamMessage) -> datetime:
    return datetime.fromtimestamp(message.timestamp_ms / 1000.0, tz=UTC)


def decode_event(message: StreamMessage) -> Event | None:
    """Build an event from a record, or ``None`` when it has no device id."""
    properties: dict[str, Any] = {}
    for name, value in message.headers:
        properties[name] = _header_value(value)

    device_id = properties.get(DEVICE_ID_PROPERTY)
    if not isinstance(device_id, str) or not device_id.strip():
        _logger.debug(
            "Dropping record without device id partition=%s offset=%s",
            message.partition_id,
            message.offset,
        )
        return None

    enqueued = enqueued_time_of(message)
    properties.setdefault(ENQUEUED_TIME_PROPERTY, enqueued.isoformat())
    properties[OFFSET_PROPERTY] = message.offset
    properties[PARTITION_ID_PROPERTY] = message.partition_id

    try:
        return Event(
            device_id=device_id,
            body=decode_body(message.value),
            system_properties=properties,
            enqueued_time=enqueued,
            partition_id=message.partition_id,
            offset=message.offset,
        )
    except ValidationError:
        _logger.debug("Record failed event validation offset=%s", message.offset, exc_info=True)
        return None
