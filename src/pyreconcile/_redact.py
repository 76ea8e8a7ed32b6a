"""Helpers for safe logging.

Connection strings carry a shared access key, and device payloads can be
arbitrarily large. Values pass through here before they reach INFO/DEBUG logs.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

_MAX_DEPTH = 20

_SECRET_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "sharedaccesskey",
        "sharedaccesssignature",
        "connectionstring",
        "sasl_plain_password",
        "token",
        "authorization",
    }
)

_CONNECTION_SECRET_RE = re.compile(r"(SharedAccessKey|SharedAccessSignature)=([^;]*)", re.IGNORECASE)


def redact_connection_string(value: str) -> str:
    """Mask the secret parts of an ``Endpoint=...;SharedAccessKey=...`` string."""
    return _CONNECTION_SECRET_RE.sub(lambda m: f"{m.group(1)}=<redacted>", value)


def _clip(text: str, max_string: int) -> str:
    text = redact_connection_string(text)
    if len(text) <= max_string:
        return text
    return f"{text[:max_string]}…<truncated>"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with secret fields masked and long strings clipped.

    Strings that embed a connection string are masked as well, so a device
    echoing its credential back in telemetry never lands in the log.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _clip(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {
            str(k): (
                "<redacted>"
                if str(k).lower() in _SECRET_FIELDS
                else redact_for_log(v, max_string=max_string, _depth=_depth + 1)
            )
            for k, v in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
