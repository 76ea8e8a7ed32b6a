"""Fan-out over partitions, fan-in onto one shared hot feed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from pyreconcile.config import RetryPolicy
from pyreconcile.models.event import Event
from pyreconcile.stream.feed import EventFeed
from pyreconcile.stream.receiver import PartitionFailure, PartitionReceiver
from pyreconcile.stream.source import Cursor, EventSource

_logger = logging.getLogger(__name__)

ReceiverFactory = Callable[..., PartitionReceiver]


class StreamMultiplexer:
    """Merge every partition of a topic into one connectable feed.

    ``bind`` discovers the partition set once (it is not watched afterwards)
    and starts one receiver per partition; records start flowing into the
    internal channel immediately. ``connect`` starts delivering that channel
    to the feed's observers in arrival order. Observers attached before
    ``connect`` also get what arrived between ``bind`` and ``connect``;
    observers attached later only see what follows their subscription.
    """

    def __init__(
        self,
        source: EventSource,
        *,
        retry: RetryPolicy | None = None,
        connect_timeout: float = 30.0,
        receiver_factory: ReceiverFactory = PartitionReceiver,
        receiver_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._source = source
        self._retry = retry or RetryPolicy()
        self._connect_timeout = connect_timeout
        self._receiver_factory = receiver_factory
        self._receiver_options = dict(receiver_options or {})
        self._feed = EventFeed()
        self._channel: asyncio.Queue[Event | PartitionFailure] = asyncio.Queue()
        self._receivers: dict[str, PartitionReceiver] = {}
        self._pump_task: asyncio.Task[None] | None = None
        self._bound = False

    @property
    def feed(self) -> EventFeed:
        return self._feed

    @property
    def partition_ids(self) -> list[str]:
        return list(self._receivers)

    @property
    def receivers(self) -> Mapping[str, PartitionReceiver]:
        return MappingProxyType(self._receivers)

    @property
    def is_bound(self) -> bool:
        return self._bound

    @property
    def is_connected(self) -> bool:
        return self._pump_task is not None and not self._pump_task.done()

    async def bind(self, cursor: Cursor | None = None) -> list[str]:
        """Discover partitions and attach a receiver to each.

        Discovery errors propagate (there is nothing to consume without a
        partition set). Attach failures do not: they arrive on the feed's
        error channel once connected.
        """
        if self._bound:
            return self.partition_ids
        partition_ids = await self._source.partition_ids()
        start = cursor or Cursor.now()
        for partition_id in partition_ids:
            self._receivers[partition_id] = self._receiver_factory(
                self._source,
                partition_id,
                on_event=self._channel.put_nowait,
                on_error=self._channel.put_nowait,
                retry=self._retry,
                connect_timeout=self._connect_timeout,
                **self._receiver_options,
            )
        self._bound = True
        results = await asyncio.gather(
            *(receiver.start_receiving(start) for receiver in self._receivers.values())
        )
        _logger.info(
            "Bound topic %s: %d partition(s), %d attached",
            self._source.name,
            len(partition_ids),
            sum(1 for ok in results if ok),
        )
        return list(partition_ids)

    def connect(self) -> None:
        """Start delivering the merged channel to feed observers."""
        if self.is_connected:
            return
        self._pump_task = asyncio.get_running_loop().create_task(
            self._pump(),
            name="pyreconcile-multiplexer",
        )

    async def restart_partition(self, partition_id: str, cursor: Cursor | None = None) -> bool:
        """Rebuild one partition's receiver, leaving the others untouched.

        Without an explicit *cursor* the receiver resumes after its last
        consumed offset, or from "now" if it never consumed anything.
        """
        receiver = self._receivers.get(partition_id)
        if receiver is None:
            raise KeyError(partition_id)
        await receiver.stop()
        start = cursor or receiver.resume_cursor(Cursor.now())
        _logger.info("Restarting partition %s %s", partition_id, start.describe())
        return await receiver.start_receiving(start)

    async def close(self) -> None:
        receivers = list(self._receivers.values())
        await asyncio.gather(*(receiver.stop() for receiver in receivers), return_exceptions=True)
        task = self._pump_task
        self._pump_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _pump(self) -> None:
        while True:
            item = await self._channel.get()
            if isinstance(item, PartitionFailure):
                self._feed.publish_failure(item)
            else:
                self._feed.publish(item)
