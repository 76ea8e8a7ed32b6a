from __future__ import annotations

from typing import Any

import paho.mqtt.client as mqtt
import pytest

from pyreconcile.dispatch.mqtt import BrokerEndpoint, MqttCommandSender, parse_broker_url
from pyreconcile.exceptions import CommandDeliveryError, DeviceConnectionError, ReconcileConfigError


class _Reason:
    def __init__(self, value: int) -> None:
        self.value = value

    def __str__(self) -> str:
        return "Success" if self.value == 0 else "Not authorized"


class _FakeInfo:
    def __init__(self, *, rc: int, mid: int, published: bool) -> None:
        self.rc = rc
        self.mid = mid
        self._published = published
        self.waited: float | None = None

    def wait_for_publish(self, timeout: float | None = None) -> None:
        self.waited = timeout

    def is_published(self) -> bool:
        return self._published


class _FakeClient:
    """Stands in for paho's client; CONNACK arrives when the loop starts."""

    def __init__(
        self,
        *,
        connect_rc: int = 0,
        connect_error: Exception | None = None,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        published: bool = True,
    ) -> None:
        self.on_connect: Any = None
        self.on_disconnect: Any = None
        self.credentials: tuple[str | None, str | None] | None = None
        self.tls = False
        self.connected_to: tuple[str, int, int] | None = None
        self.loop_running = False
        self.disconnected = False
        self.published: list[tuple[str, bytes, int]] = []
        self.infos: list[_FakeInfo] = []
        self._connect_rc = connect_rc
        self._connect_error = connect_error
        self._publish_rc = publish_rc
        self._published_ok = published

    def enable_logger(self, logger: Any) -> None:
        pass

    def username_pw_set(self, username: str | None, password: str | None) -> None:
        self.credentials = (username, password)

    def tls_set(self) -> None:
        self.tls = True

    def connect(self, host: str, port: int, keepalive: int = 60) -> None:
        if self._connect_error is not None:
            raise self._connect_error
        self.connected_to = (host, port, keepalive)

    def loop_start(self) -> None:
        self.loop_running = True
        self.on_connect(self, None, None, _Reason(self._connect_rc), None)

    def loop_stop(self) -> None:
        self.loop_running = False

    def disconnect(self) -> None:
        self.disconnected = True

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> _FakeInfo:
        self.published.append((topic, payload, qos))
        info = _FakeInfo(rc=self._publish_rc, mid=len(self.published), published=self._published_ok)
        self.infos.append(info)
        return info


def _sender(client: _FakeClient, *, tls: bool = True) -> MqttCommandSender:
    return MqttCommandSender(
        broker=BrokerEndpoint(host="hub.example.test", port=8883, tls=tls),
        username="iothubowner",
        password="secret",
        keepalive=60,
        connect_timeout=1.0,
        send_timeout=2.0,
        client_factory=lambda client_id: client,
    )


@pytest.mark.asyncio
async def test_open_and_send_publishes_at_least_once_to_device_topic() -> None:
    client = _FakeClient()
    sender = _sender(client)

    await sender.open()
    mid = await sender.send("huzzah", b'{"Name":"TurnLedOn","Parameters":{"ledId":1}}')

    assert sender.is_connected
    assert client.tls
    assert client.credentials == ("iothubowner", "secret")
    assert client.connected_to == ("hub.example.test", 8883, 60)
    assert client.published == [
        ("devices/huzzah/messages/devicebound", b'{"Name":"TurnLedOn","Parameters":{"ledId":1}}', 1)
    ]
    assert client.infos[0].waited == 2.0
    assert mid == 1

    await sender.close()
    assert client.disconnected
    assert not client.loop_running
    assert not sender.is_connected


@pytest.mark.asyncio
async def test_refused_connection_raises_device_connection_error() -> None:
    client = _FakeClient(connect_rc=135)
    sender = _sender(client)

    with pytest.raises(DeviceConnectionError, match="Could not connect"):
        await sender.open()
    assert not client.loop_running
    assert not sender.is_connected


@pytest.mark.asyncio
async def test_network_error_on_connect_raises_device_connection_error() -> None:
    sender = _sender(_FakeClient(connect_error=ConnectionRefusedError("refused")))

    with pytest.raises(DeviceConnectionError):
        await sender.open()


@pytest.mark.asyncio
async def test_rejected_or_unacknowledged_publish_raises_delivery_error() -> None:
    rejected = _sender(_FakeClient(publish_rc=mqtt.MQTT_ERR_NO_CONN), tls=False)
    await rejected.open()
    with pytest.raises(CommandDeliveryError):
        await rejected.send("rpi2", b"led:on")
    await rejected.close()

    unacked = _sender(_FakeClient(published=False))
    await unacked.open()
    with pytest.raises(CommandDeliveryError, match="not acknowledged"):
        await unacked.send("rpi2", b"led:on")
    await unacked.close()


@pytest.mark.asyncio
async def test_send_before_open_raises_delivery_error() -> None:
    with pytest.raises(CommandDeliveryError):
        await _sender(_FakeClient()).send("rpi2", b"led:on")


def test_topic_template_is_configurable() -> None:
    sender = MqttCommandSender(
        broker=BrokerEndpoint(host="localhost", port=1883, tls=False),
        topic_template="cmd/{device_id}",
    )
    assert sender.topic_for("edison") == "cmd/edison"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("mqtts://hub.example.test", BrokerEndpoint("hub.example.test", 8883, True)),
        ("mqtt://localhost", BrokerEndpoint("localhost", 1883, False)),
        ("mqtt://localhost:11883", BrokerEndpoint("localhost", 11883, False)),
        ("hub.example.test:8884", BrokerEndpoint("hub.example.test", 8884, True)),
    ],
)
def test_parse_broker_url(raw: str, expected: BrokerEndpoint) -> None:
    assert parse_broker_url(raw) == expected


@pytest.mark.parametrize("raw", ["", "http://example.test", "mqtt://"])
def test_parse_broker_url_rejects_invalid_values(raw: str) -> None:
    with pytest.raises(ReconcileConfigError):
        parse_broker_url(raw)
