from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from fakes import BASE_TIME
from pyreconcile.exceptions import DesiredStateError
from pyreconcile.models import Command, DesiredStateSnapshot, Event, encode_payload


def test_event_normalizes_naive_enqueued_time_to_utc() -> None:
    event = Event(device_id=" huzzah ", body={"Led1": True}, enqueued_time=datetime(2024, 1, 1))
    assert event.device_id == "huzzah"
    assert event.enqueued_time == BASE_TIME
    assert event.is_structured


def test_event_requires_device_id() -> None:
    with pytest.raises(ValidationError):
        Event(device_id="  ", enqueued_time=BASE_TIME)


def test_default_snapshot_carries_compiled_in_states() -> None:
    snapshot = DesiredStateSnapshot.default()
    assert len(snapshot) == 3
    assert snapshot.get("huzzah").get("led1") is True
    assert snapshot.get("edison").get("lcdText") == "Edison"
    assert "unknown" not in snapshot


def test_snapshot_from_document_round_trips_to_document() -> None:
    document = {"huzzah": {"led1": False, "led2": True}, "rpi2": {"Led": True, "LcdText": "hi"}}
    snapshot = DesiredStateSnapshot.from_document(document, origin="states.json")
    assert snapshot.origin == "states.json"
    assert snapshot.as_document() == document


@pytest.mark.parametrize(
    "document",
    [
        ["huzzah"],
        {"huzzah": "on"},
        {"huzzah": {"led1": 1}},
        {"huzzah": {"led1": None}},
    ],
)
def test_snapshot_rejects_invalid_documents(document: object) -> None:
    with pytest.raises(DesiredStateError):
        DesiredStateSnapshot.from_document(document)


def test_structured_command_is_compact_json() -> None:
    command = Command.structured("huzzah", "TurnLedOn", {"ledId": 1})
    assert command.payload == b'{"Name":"TurnLedOn","Parameters":{"ledId":1}}'


def test_text_command_is_utf8() -> None:
    command = Command.text("edison", "text:Édison")
    assert command.payload == "text:Édison".encode()
    assert command.payload_text() == "text:Édison"


def test_encode_payload_rejects_unsupported_types() -> None:
    with pytest.raises(TypeError):
        encode_payload(42)  # type: ignore[arg-type]
