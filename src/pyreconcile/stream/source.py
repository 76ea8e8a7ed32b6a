"""Transport-neutral interfaces for the partitioned event stream.

Receivers and the multiplexer only talk to these protocols; the Kafka
implementation lives in :mod:`pyreconcile.stream.kafka` and tests use
in-memory doubles.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True)
class Cursor:
    """Starting point of a partition receiver.

    Exactly one of ``enqueued_after`` or ``offset`` is set. A time cursor
    only admits events enqueued strictly after it, so reconnecting never
    replays history. An offset cursor admits everything from that offset on.
    """

    enqueued_after: datetime | None = None
    offset: int | None = None

    def __post_init__(self) -> None:
        if (self.enqueued_after is None) == (self.offset is None):
            raise ValueError("Cursor needs exactly one of enqueued_after or offset")
        if self.offset is not None and self.offset < 0:
            raise ValueError("Cursor offset must be >= 0")
        if self.enqueued_after is not None and self.enqueued_after.tzinfo is None:
            object.__setattr__(self, "enqueued_after", self.enqueued_after.replace(tzinfo=UTC))

    @classmethod
    def now(cls) -> Cursor:
        return cls(enqueued_after=datetime.now(UTC))

    @classmethod
    def from_time(cls, when: datetime) -> Cursor:
        return cls(enqueued_after=when)

    @classmethod
    def from_offset(cls, offset: int) -> Cursor:
        return cls(offset=offset)

    @property
    def is_time_based(self) -> bool:
        return self.enqueued_after is not None

    def admits(self, enqueued_time: datetime) -> bool:
        """Apply the ``enqueued time > cursor`` predicate (always true for offsets)."""
        if self.enqueued_after is None:
            return True
        return enqueued_time > self.enqueued_after

    def describe(self) -> str:
        if self.enqueued_after is not None:
            return f"start time: {self.enqueued_after.isoformat()}"
        return f"start offset: {self.offset}"


@dataclass(frozen=True)
class StreamMessage:
    """A raw record as read from one partition."""

    partition_id: str
    offset: int
    timestamp_ms: int
    value: bytes | None
    key: bytes | None = None
    headers: Sequence[tuple[str, bytes | str | None]] = field(default_factory=tuple)


class PartitionLink(Protocol):
    """An open, positioned connection to one partition."""

    async def receive(self) -> Sequence[StreamMessage]:
        """Wait briefly for the next batch; an empty batch means "nothing yet".

        Raises ``StreamTransientError`` / ``StreamRedirectError`` for
        recoverable failures; any other exception is terminal.
        """
        ...

    async def close(self) -> None:
        ...


class EventSource(Protocol):
    """A partitioned topic that can be enumerated and attached to."""

    @property
    def name(self) -> str:
        ...

    async def partition_ids(self) -> list[str]:
        ...

    async def open_partition(self, partition_id: str, cursor: Cursor) -> PartitionLink:
        ...
