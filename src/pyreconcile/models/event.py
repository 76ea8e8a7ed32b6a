"""Telemetry events surfaced by partition receivers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

#: System property carrying the sending device's identifier.
DEVICE_ID_PROPERTY = "iothub-connection-device-id"
#: System property carrying the broker-side enqueue time.
ENQUEUED_TIME_PROPERTY = "x-opt-enqueued-time"
OFFSET_PROPERTY = "x-opt-offset"
PARTITION_ID_PROPERTY = "x-opt-partition-id"


class Event(BaseModel):
    """One decoded telemetry message from a device."""

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., description="Identifier of the sending device")
    body: dict[str, Any] | bytes = Field(
        default=b"",
        description="Decoded JSON object, or the raw payload when it is not one.",
    )
    system_properties: dict[str, Any] = Field(default_factory=dict)
    enqueued_time: datetime
    partition_id: str | None = None
    offset: int | None = None

    @field_validator("device_id")
    @classmethod
    def _normalize_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("device_id must be non-empty")
        return device_id

    @field_validator("enqueued_time")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def is_structured(self) -> bool:
        """Whether the body decoded to a JSON object."""
        return isinstance(self.body, dict)
