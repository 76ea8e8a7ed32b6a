"""Kafka-protocol implementation of :class:`~pyreconcile.stream.source.EventSource`.

Azure Event Hubs (and therefore the IoT Hub built-in endpoint) speaks the
Kafka protocol on port 9093, so the same consumer works against a hub or a
local broker. Each partition gets its own manually-assigned consumer: no
consumer group and no offset commits, the cursor alone decides the start.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator, Sequence
from typing import Any

from aiokafka import AIOKafkaConsumer, TopicPartition
from aiokafka.errors import (
    KafkaError,
    LeaderNotAvailableError,
    NotLeaderForPartitionError,
)
from aiokafka.helpers import create_ssl_context

from pyreconcile.connection import ConnectionString
from pyreconcile.exceptions import (
    PartitionDiscoveryError,
    StreamError,
    StreamRedirectError,
    StreamTransientError,
)
from pyreconcile.stream.source import Cursor, StreamMessage

_logger = logging.getLogger(__name__)

ConsumerFactory = Callable[..., Any]


@contextlib.contextmanager
def _translate_errors(partition_id: str | None) -> Iterator[None]:
    """Map aiokafka failures onto the stream error taxonomy."""
    try:
        yield
    except StreamError:
        raise
    except (NotLeaderForPartitionError, LeaderNotAvailableError) as exc:
        raise StreamRedirectError(
            f"partition leadership moved: {exc}",
            partition_id=partition_id,
            location=getattr(exc, "description", None),
        ) from exc
    except KafkaError as exc:
        if getattr(exc, "retriable", False):
            raise StreamTransientError(f"transient broker error: {exc}", partition_id=partition_id) from exc
        raise StreamError(f"broker error: {exc}", partition_id=partition_id) from exc
    except (OSError, TimeoutError) as exc:
        raise StreamTransientError(f"connection error: {exc!r}", partition_id=partition_id) from exc


class KafkaPartitionLink:
    """A started consumer positioned on one partition."""

    def __init__(
        self,
        consumer: Any,
        partition: TopicPartition,
        *,
        poll_timeout_ms: int,
    ) -> None:
        self._consumer = consumer
        self._partition = partition
        self._poll_timeout_ms = poll_timeout_ms
        self._partition_id = str(partition.partition)

    async def receive(self) -> Sequence[StreamMessage]:
        with _translate_errors(self._partition_id):
            batches = await self._consumer.getmany(self._partition, timeout_ms=self._poll_timeout_ms)
        records = batches.get(self._partition, [])
        return [
            StreamMessage(
                partition_id=self._partition_id,
                offset=record.offset,
                timestamp_ms=record.timestamp,
                value=record.value,
                key=record.key,
                headers=tuple(record.headers or ()),
            )
            for record in records
        ]

    async def close(self) -> None:
        try:
            await self._consumer.stop()
        except Exception:
            _logger.debug("Consumer stop failed partition=%s", self._partition_id, exc_info=True)


class KafkaEventSource:
    """Partitioned topic reached over the Kafka protocol."""

    def __init__(
        self,
        connection: ConnectionString,
        *,
        client_id: str = "pyreconcile",
        poll_timeout: float = 1.0,
        request_timeout: float = 30.0,
        consumer_factory: ConsumerFactory = AIOKafkaConsumer,
    ) -> None:
        self._connection = connection
        self._client_id = client_id
        self._poll_timeout_ms = max(int(poll_timeout * 1000), 1)
        self._request_timeout_ms = max(int(request_timeout * 1000), 1)
        self._consumer_factory = consumer_factory

    @property
    def name(self) -> str:
        return self._connection.entity_path

    def _consumer_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "bootstrap_servers": self._connection.bootstrap_servers,
            "client_id": self._client_id,
            "group_id": None,
            "enable_auto_commit": False,
            "request_timeout_ms": self._request_timeout_ms,
        }
        security = self._connection.kafka_security()
        kwargs.update(security)
        if security.get("security_protocol") == "SASL_SSL":
            kwargs["ssl_context"] = create_ssl_context()
        return kwargs

    def _new_consumer(self) -> Any:
        return self._consumer_factory(**self._consumer_kwargs())

    async def partition_ids(self) -> list[str]:
        """Fetch topic metadata and return its partition identifiers."""
        consumer = self._new_consumer()
        try:
            with _translate_errors(None):
                await consumer.start()
                await consumer.topics()
            partitions = consumer.partitions_for_topic(self.name)
        finally:
            with contextlib.suppress(Exception):
                await consumer.stop()
        if not partitions:
            raise PartitionDiscoveryError(f"topic {self.name!r} not found or has no partitions")
        return [str(p) for p in sorted(partitions)]

    async def open_partition(self, partition_id: str, cursor: Cursor) -> KafkaPartitionLink:
        """Start a consumer assigned to *partition_id* and seek it to *cursor*."""
        partition = TopicPartition(self.name, int(partition_id))
        consumer = self._new_consumer()
        try:
            with _translate_errors(partition_id):
                await consumer.start()
                consumer.assign([partition])
                await self._seek(consumer, partition, cursor)
        except BaseException:
            with contextlib.suppress(Exception):
                await consumer.stop()
            raise
        _logger.info("Listening on %s/%s %s", self.name, partition_id, cursor.describe())
        return KafkaPartitionLink(consumer, partition, poll_timeout_ms=self._poll_timeout_ms)

    @staticmethod
    async def _seek(consumer: Any, partition: TopicPartition, cursor: Cursor) -> None:
        if cursor.offset is not None:
            consumer.seek(partition, cursor.offset)
            return
        assert cursor.enqueued_after is not None  # noqa: S101
        ts_ms = int(cursor.enqueued_after.timestamp() * 1000)
        found = await consumer.offsets_for_times({partition: ts_ms})
        position = found.get(partition)
        if position is None:
            # Nothing enqueued after the cursor yet: start at the tail.
            await consumer.seek_to_end(partition)
        else:
            consumer.seek(partition, position.offset)

