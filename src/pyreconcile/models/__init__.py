"""Data models shared across the stream, state and reconciliation layers."""

from pyreconcile.models.command import Command, encode_payload
from pyreconcile.models.desired_state import (
    DEFAULT_DESIRED_STATES,
    AttributeValue,
    DesiredState,
    DesiredStateSnapshot,
)
from pyreconcile.models.event import DEVICE_ID_PROPERTY, ENQUEUED_TIME_PROPERTY, Event

__all__ = [
    "DEFAULT_DESIRED_STATES",
    "DEVICE_ID_PROPERTY",
    "ENQUEUED_TIME_PROPERTY",
    "AttributeValue",
    "Command",
    "DesiredState",
    "DesiredStateSnapshot",
    "Event",
    "encode_payload",
]
