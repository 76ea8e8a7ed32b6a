"""Corrective commands sent to devices."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


def encode_payload(payload: str | bytes | Mapping[str, Any]) -> bytes:
    """Serialize a command payload the way devices expect it.

    Objects become compact JSON, strings are UTF-8 encoded and bytes pass
    through untouched.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, Mapping):
        return json.dumps(dict(payload), separators=(",", ":")).encode("utf-8")
    raise TypeError(f"unsupported command payload type: {type(payload).__name__}")


class Command(BaseModel):
    """A serialized command addressed to one device."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    payload: bytes

    @field_validator("device_id")
    @classmethod
    def _normalize_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("device_id must be non-empty")
        return device_id

    @classmethod
    def structured(cls, device_id: str, name: str, parameters: Mapping[str, Any]) -> Command:
        """``{"Name": ..., "Parameters": {...}}`` JSON command."""
        return cls(
            device_id=device_id,
            payload=encode_payload({"Name": name, "Parameters": dict(parameters)}),
        )

    @classmethod
    def text(cls, device_id: str, text: str) -> Command:
        """Flat ``attr:value`` string command."""
        return cls(device_id=device_id, payload=encode_payload(text))

    def payload_text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")
