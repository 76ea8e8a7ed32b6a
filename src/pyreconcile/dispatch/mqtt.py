"""MQTT send channel for device commands.

paho-mqtt runs its network loop in its own thread; connect acknowledgements
are bridged back onto the asyncio loop and publish completion is awaited in
the default executor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from pyreconcile.config import DEFAULT_COMMAND_TOPIC
from pyreconcile.exceptions import CommandDeliveryError, DeviceConnectionError, ReconcileConfigError


@dataclass(frozen=True)
class BrokerEndpoint:
    host: str
    port: int
    tls: bool


def parse_broker_url(raw_broker: str) -> BrokerEndpoint:
    """Parse ``mqtt://host[:port]`` / ``mqtts://host[:port]`` (bare ``host:port`` means TLS)."""
    value = raw_broker.strip()
    if not value:
        raise ReconcileConfigError("Command broker URL is empty")
    if "://" not in value:
        value = f"mqtts://{value}"
    parts = urlsplit(value)
    if parts.scheme not in {"mqtt", "mqtts"} or not parts.hostname:
        raise ReconcileConfigError(f"Unsupported command broker URL: {raw_broker!r}")
    tls = parts.scheme == "mqtts"
    return BrokerEndpoint(host=parts.hostname, port=parts.port or (8883 if tls else 1883), tls=tls)


ClientFactory = Callable[..., Any]


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


class MqttCommandSender:
    """Publish command payloads to a per-device topic at QoS 1."""

    def __init__(
        self,
        *,
        broker: BrokerEndpoint,
        client_id: str = "pyreconcile",
        username: str | None = None,
        password: str | None = None,
        topic_template: str = DEFAULT_COMMAND_TOPIC,
        keepalive: int = 120,
        connect_timeout: float = 30.0,
        send_timeout: float = 10.0,
        client_factory: ClientFactory = _default_client_factory,
        logger: logging.Logger | None = None,
    ) -> None:
        self._broker = broker
        self._client_id = client_id
        self._username = username
        self._password = password
        self._topic_template = topic_template
        self._keepalive = keepalive
        self._connect_timeout = connect_timeout
        self._send_timeout = send_timeout
        self._client_factory = client_factory
        self._logger = logger or logging.getLogger(__name__)
        self._client: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def topic_for(self, device_id: str) -> str:
        return self._topic_template.format(device_id=device_id)

    async def open(self) -> None:
        """Connect and wait for the broker's CONNACK.

        Raises ``DeviceConnectionError`` on refusal, network error or timeout.
        """
        loop = asyncio.get_running_loop()
        self._loop = loop
        connected: asyncio.Future[None] = loop.create_future()

        def _settle(exc: BaseException | None) -> None:
            if connected.done():
                return
            if exc is None:
                connected.set_result(None)
            else:
                connected.set_exception(exc)

        client = self._client_factory(self._client_id)
        client.enable_logger(self._logger)
        if self._username is not None:
            client.username_pw_set(self._username, self._password)
        if self._broker.tls:
            client.tls_set()

        def on_connect(
            _c: Any,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                loop.call_soon_threadsafe(
                    _settle,
                    DeviceConnectionError(f"Could not connect: broker refused ({reason_code})"),
                )
                return
            self._connected = True
            self._logger.debug("MQTT connected reason=%s", reason_code)
            loop.call_soon_threadsafe(_settle, None)

        def on_disconnect(
            _c: Any,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            was_connected = self._connected
            self._connected = False
            if was_connected:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_disconnect = on_disconnect

        try:
            await loop.run_in_executor(
                None,
                lambda: client.connect(self._broker.host, self._broker.port, keepalive=self._keepalive),
            )
        except (OSError, ValueError) as exc:
            raise DeviceConnectionError(
                f"Could not connect to {self._broker.host}:{self._broker.port}: {exc}"
            ) from exc
        client.loop_start()
        self._client = client

        try:
            await asyncio.wait_for(connected, self._connect_timeout)
        except TimeoutError as exc:
            await self.close()
            raise DeviceConnectionError(
                f"Could not connect to {self._broker.host}:{self._broker.port}: no CONNACK within "
                f"{self._connect_timeout:.0f}s"
            ) from exc
        except DeviceConnectionError:
            await self.close()
            raise
        self._logger.info("Client connected to %s:%s", self._broker.host, self._broker.port)

    async def send(self, device_id: str, payload: bytes) -> int:
        """Publish *payload* for *device_id*; returns the MQTT message id."""
        client = self._client
        if client is None:
            raise CommandDeliveryError("send channel is not open", device_id=device_id)
        loop = self._loop or asyncio.get_running_loop()
        info = client.publish(self.topic_for(device_id), payload, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise CommandDeliveryError(
                f"publish rejected: {mqtt.error_string(info.rc)}",
                device_id=device_id,
            )
        try:
            await loop.run_in_executor(None, info.wait_for_publish, self._send_timeout)
        except (RuntimeError, ValueError) as exc:
            raise CommandDeliveryError(f"publish failed: {exc}", device_id=device_id) from exc
        if not info.is_published():
            raise CommandDeliveryError(
                f"publish not acknowledged within {self._send_timeout:.0f}s",
                device_id=device_id,
            )
        return int(info.mid)

    async def close(self) -> None:
        client = self._client
        self._client = None
        was_connected = self._connected
        self._connected = False
        if client is None:
            return
        loop = self._loop or asyncio.get_running_loop()
        try:
            if was_connected:
                self._logger.debug("MQTT disconnect requested")
                await loop.run_in_executor(None, client.disconnect)
        finally:
            await loop.run_in_executor(None, client.loop_stop)
            self._logger.debug("MQTT network loop stopped")
