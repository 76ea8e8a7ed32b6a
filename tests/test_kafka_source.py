from __future__ import annotations

import ssl
from types import SimpleNamespace
from typing import Any

import pytest
from aiokafka import TopicPartition
from aiokafka.errors import NotLeaderForPartitionError, RequestTimedOutError, TopicAuthorizationFailedError

from fakes import BASE_MS, BASE_TIME
from pyreconcile.connection import ConnectionString
from pyreconcile.exceptions import PartitionDiscoveryError, StreamError, StreamRedirectError, StreamTransientError
from pyreconcile.stream.kafka import KafkaEventSource
from pyreconcile.stream.source import Cursor


class _FakeConsumer:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.started = False
        self.stopped = False
        self.assigned: list[TopicPartition] = []
        self.seeks: list[tuple[TopicPartition, int]] = []
        self.seeked_to_end: list[TopicPartition] = []
        self.partitions: set[int] | None = {1, 0}
        self.time_offset: int | None = 42
        self.records: list[Any] = []
        self.receive_error: Exception | None = None

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def topics(self) -> set[str]:
        return {"telemetry"}

    def partitions_for_topic(self, topic: str) -> set[int] | None:
        return self.partitions

    def assign(self, partitions: list[TopicPartition]) -> None:
        self.assigned = list(partitions)

    def seek(self, partition: TopicPartition, offset: int) -> None:
        self.seeks.append((partition, offset))

    async def seek_to_end(self, *partitions: TopicPartition) -> None:
        self.seeked_to_end.extend(partitions)

    async def offsets_for_times(self, timestamps: dict[TopicPartition, int]) -> dict[TopicPartition, Any]:
        self.requested_times = timestamps
        if self.time_offset is None:
            return {tp: None for tp in timestamps}
        return {tp: SimpleNamespace(offset=self.time_offset, timestamp=ts) for tp, ts in timestamps.items()}

    async def getmany(self, *partitions: TopicPartition, timeout_ms: int = 0) -> dict[TopicPartition, list[Any]]:
        if self.receive_error is not None:
            raise self.receive_error
        records, self.records = self.records, []
        return {partitions[0]: records} if records else {}


class _Factory:
    def __init__(self, **overrides: Any) -> None:
        self.consumers: list[_FakeConsumer] = []
        self._overrides = overrides

    def __call__(self, **kwargs: Any) -> _FakeConsumer:
        consumer = _FakeConsumer(**kwargs)
        for name, value in self._overrides.items():
            setattr(consumer, name, value)
        self.consumers.append(consumer)
        return consumer


def _source(factory: _Factory, endpoint: str = "kafka://broker:9092") -> KafkaEventSource:
    connection = ConnectionString.parse(f"Endpoint={endpoint};EntityPath=telemetry")
    return KafkaEventSource(connection, poll_timeout=0.5, consumer_factory=factory)


@pytest.mark.asyncio
async def test_partition_discovery_returns_sorted_ids_and_stops_consumer() -> None:
    factory = _Factory()

    assert await _source(factory).partition_ids() == ["0", "1"]

    consumer = factory.consumers[0]
    assert consumer.stopped
    assert consumer.kwargs["bootstrap_servers"] == "broker:9092"
    assert consumer.kwargs["group_id"] is None
    assert consumer.kwargs["enable_auto_commit"] is False
    assert consumer.kwargs["security_protocol"] == "PLAINTEXT"


@pytest.mark.asyncio
async def test_missing_topic_raises_discovery_error() -> None:
    factory = _Factory(partitions=None)

    with pytest.raises(PartitionDiscoveryError):
        await _source(factory).partition_ids()


@pytest.mark.asyncio
async def test_event_hubs_endpoint_uses_sasl_ssl() -> None:
    factory = _Factory()
    connection = ConnectionString.parse(
        "Endpoint=sb://ns.servicebus.windows.net/;SharedAccessKeyName=owner;SharedAccessKey=k;EntityPath=hub"
    )

    await KafkaEventSource(connection, consumer_factory=factory).partition_ids()

    kwargs = factory.consumers[0].kwargs
    assert kwargs["bootstrap_servers"] == "ns.servicebus.windows.net:9093"
    assert kwargs["security_protocol"] == "SASL_SSL"
    assert kwargs["sasl_plain_username"] == "$ConnectionString"
    assert isinstance(kwargs["ssl_context"], ssl.SSLContext)


@pytest.mark.asyncio
async def test_offset_cursor_seeks_directly() -> None:
    factory = _Factory()

    await _source(factory).open_partition("1", Cursor.from_offset(17))

    consumer = factory.consumers[0]
    assert consumer.assigned == [TopicPartition("telemetry", 1)]
    assert consumer.seeks == [(TopicPartition("telemetry", 1), 17)]


@pytest.mark.asyncio
async def test_time_cursor_seeks_by_timestamp_or_to_end() -> None:
    factory = _Factory()
    await _source(factory).open_partition("0", Cursor.from_time(BASE_TIME))
    consumer = factory.consumers[0]
    assert consumer.requested_times == {TopicPartition("telemetry", 0): BASE_MS}
    assert consumer.seeks == [(TopicPartition("telemetry", 0), 42)]

    empty = _Factory(time_offset=None)
    await _source(empty).open_partition("0", Cursor.from_time(BASE_TIME))
    assert empty.consumers[0].seeked_to_end == [TopicPartition("telemetry", 0)]


@pytest.mark.asyncio
async def test_receive_maps_records_to_stream_messages() -> None:
    record = SimpleNamespace(
        offset=8,
        timestamp=BASE_MS,
        value=b'{"Led": true}',
        key=None,
        headers=[("iothub-connection-device-id", b"rpi2")],
    )
    factory = _Factory(records=[record])
    link = await _source(factory).open_partition("0", Cursor.from_offset(8))

    [message] = await link.receive()
    assert await link.receive() == []

    assert message.partition_id == "0"
    assert message.offset == 8
    assert message.timestamp_ms == BASE_MS
    assert message.headers == (("iothub-connection-device-id", b"rpi2"),)
    await link.close()
    assert factory.consumers[0].stopped


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (NotLeaderForPartitionError(), StreamRedirectError),
        (RequestTimedOutError(), StreamTransientError),
        (ConnectionResetError("reset"), StreamTransientError),
    ],
)
async def test_receive_errors_are_classified(error: Exception, expected: type[StreamError]) -> None:
    factory = _Factory(receive_error=error)
    link = await _source(factory).open_partition("0", Cursor.from_offset(0))

    with pytest.raises(expected) as info:
        await link.receive()
    assert info.value.partition_id == "0"


@pytest.mark.asyncio
async def test_non_retriable_broker_errors_are_terminal() -> None:
    factory = _Factory(receive_error=TopicAuthorizationFailedError())
    link = await _source(factory).open_partition("0", Cursor.from_offset(0))

    with pytest.raises(StreamError) as info:
        await link.receive()
    assert not isinstance(info.value, (StreamTransientError, StreamRedirectError))
