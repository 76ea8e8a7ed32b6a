"""Connection-string parsing.

A single ``Endpoint=...;SharedAccessKeyName=...;SharedAccessKey=...;EntityPath=...``
credential drives both the event stream and the command channel.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyreconcile._redact import redact_connection_string
from pyreconcile.exceptions import ReconcileConfigError

#: Placeholder used when no credential is supplied. It never parses, so a
#: missing credential fails at startup instead of at first use.
PLACEHOLDER_CONNECTION_STRING = "<IOT_HUB_CONNECTION_STRING_GOES_HERE>"

#: Kafka-protocol port of Event Hubs namespaces.
EVENT_HUBS_KAFKA_PORT = 9093
DEFAULT_KAFKA_PORT = 9092

_KNOWN_KEYS = {
    "endpoint": "endpoint",
    "sharedaccesskeyname": "shared_access_key_name",
    "sharedaccesskey": "shared_access_key",
    "entitypath": "entity_path",
}


class ConnectionString(BaseModel):
    """Parsed connection credential."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    endpoint: str
    entity_path: str
    shared_access_key_name: str | None = None
    shared_access_key: str | None = None
    raw: str = Field(default="", repr=False)

    @field_validator("endpoint")
    @classmethod
    def _validate_endpoint(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in {"sb", "kafka"} or not parts.hostname:
            raise ValueError(f"unsupported endpoint {value!r} (expected sb://host/ or kafka://host:port)")
        return value

    @field_validator("entity_path")
    @classmethod
    def _validate_entity_path(cls, value: str) -> str:
        if not value:
            raise ValueError("EntityPath must be non-empty")
        return value

    @classmethod
    def parse(cls, value: str) -> ConnectionString:
        """Parse ``Key=Value;`` pairs. Raises :class:`ReconcileConfigError`."""
        text = (value or "").strip()
        if not text or text == PLACEHOLDER_CONNECTION_STRING:
            raise ReconcileConfigError("No connection string configured (set IOTHUB_CONNECTION_STRING)")

        fields: dict[str, Any] = {"raw": text}
        for segment in text.split(";"):
            if not segment.strip():
                continue
            key, sep, val = segment.partition("=")
            if not sep:
                raise ReconcileConfigError(f"Malformed connection string segment: {redact_connection_string(segment)!r}")
            name = _KNOWN_KEYS.get(key.strip().lower())
            if name is None:
                # Unknown keys (e.g. HostName, DeviceId) are tolerated and ignored.
                continue
            fields[name] = val.strip()

        missing = [k for k in ("endpoint", "entity_path") if not fields.get(k)]
        if missing:
            raise ReconcileConfigError(f"Connection string missing required key(s): {', '.join(missing)}")

        try:
            return cls.model_validate(fields)
        except ValueError as exc:
            raise ReconcileConfigError(f"Invalid connection string: {exc}") from exc

    @property
    def is_event_hubs(self) -> bool:
        return urlsplit(self.endpoint).scheme == "sb"

    @property
    def host(self) -> str:
        return urlsplit(self.endpoint).hostname or ""

    @property
    def bootstrap_servers(self) -> str:
        parts = urlsplit(self.endpoint)
        if self.is_event_hubs:
            return f"{parts.hostname}:{EVENT_HUBS_KAFKA_PORT}"
        return f"{parts.hostname}:{parts.port or DEFAULT_KAFKA_PORT}"

    def kafka_security(self) -> dict[str, Any]:
        """Consumer keyword arguments for authenticating against the endpoint."""
        if not self.is_event_hubs:
            return {"security_protocol": "PLAINTEXT"}
        return {
            "security_protocol": "SASL_SSL",
            "sasl_mechanism": "PLAIN",
            "sasl_plain_username": "$ConnectionString",
            "sasl_plain_password": self.raw,
        }

    def redacted(self) -> str:
        return redact_connection_string(self.raw)
