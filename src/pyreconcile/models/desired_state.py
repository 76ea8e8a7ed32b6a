"""Desired-state documents and snapshots.

A snapshot is immutable once built. The store replaces whole snapshots and
never edits one in place, so a reader holding a reference always sees a
complete document.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, field_validator

from pyreconcile.exceptions import DesiredStateError

AttributeValue = StrictBool | StrictStr

#: Compiled-in desired states used until the first successful reload.
DEFAULT_DESIRED_STATES: Mapping[str, Mapping[str, bool | str]] = MappingProxyType(
    {
        "huzzah": MappingProxyType({"led1": True, "led2": False}),
        "rpi2": MappingProxyType({"Led": False, "LcdText": "RPi2"}),
        "edison": MappingProxyType({"greenLed": False, "redLed": True, "lcdText": "Edison"}),
    }
)


class DesiredState(BaseModel):
    """Target attribute values for one device."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    device_id: str
    attributes: Mapping[str, AttributeValue] = Field(default_factory=dict, validate_default=True)

    @field_validator("device_id")
    @classmethod
    def _normalize_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("device_id must be non-empty")
        return device_id

    @field_validator("attributes")
    @classmethod
    def _freeze_attributes(cls, value: Mapping[str, bool | str]) -> Mapping[str, bool | str]:
        return MappingProxyType(dict(value))

    def get(self, attribute: str) -> bool | str | None:
        return self.attributes.get(attribute)


class DesiredStateSnapshot(BaseModel):
    """A complete device → desired-state mapping loaded at one point in time."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    devices: Mapping[str, DesiredState] = Field(default_factory=dict, validate_default=True)
    loaded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    origin: str = "default"

    @field_validator("devices")
    @classmethod
    def _freeze_devices(cls, value: Mapping[str, DesiredState]) -> Mapping[str, DesiredState]:
        return MappingProxyType(dict(value))

    def get(self, device_id: str) -> DesiredState | None:
        return self.devices.get(device_id)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self.devices

    def __len__(self) -> int:
        return len(self.devices)

    def as_document(self) -> dict[str, dict[str, bool | str]]:
        """Render back to the on-disk JSON shape."""
        return {device_id: dict(state.attributes) for device_id, state in self.devices.items()}

    @classmethod
    def from_document(cls, document: Any, *, origin: str = "document") -> DesiredStateSnapshot:
        """Validate a parsed JSON document into a snapshot.

        The document must be an object mapping device identifiers to objects
        of boolean/string attributes. Anything else raises
        :class:`DesiredStateError` and nothing is built.
        """
        if not isinstance(document, Mapping):
            raise DesiredStateError(
                f"desired-state document must be a JSON object, got {type(document).__name__}",
                location=origin,
            )
        devices: dict[str, DesiredState] = {}
        for device_id, attributes in document.items():
            if not isinstance(attributes, Mapping):
                raise DesiredStateError(
                    f"desired state for {device_id!r} must be an object",
                    location=origin,
                )
            try:
                state = DesiredState(device_id=str(device_id), attributes=dict(attributes))
            except ValidationError as exc:
                raise DesiredStateError(
                    f"invalid desired state for {device_id!r}: {exc.errors()[0]['msg']}",
                    location=origin,
                ) from exc
            devices[state.device_id] = state
        return cls(devices=devices, origin=origin)

    @classmethod
    def default(cls) -> DesiredStateSnapshot:
        return cls.from_document(
            {device_id: dict(attrs) for device_id, attrs in DEFAULT_DESIRED_STATES.items()},
            origin="default",
        )
