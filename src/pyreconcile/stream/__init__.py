"""Partitioned event-stream ingestion.

Discovery and per-partition receivers feed a single hot stream that any
number of filtered views can observe.
"""

from pyreconcile.stream.feed import EventFeed, FeedView, Subscription
from pyreconcile.stream.multiplexer import StreamMultiplexer
from pyreconcile.stream.receiver import PartitionFailure, PartitionReceiver
from pyreconcile.stream.source import Cursor, EventSource, PartitionLink, StreamMessage
from pyreconcile.stream.supervisor import PartitionSupervisor

__all__ = [
    "Cursor",
    "EventFeed",
    "EventSource",
    "FeedView",
    "PartitionFailure",
    "PartitionLink",
    "PartitionReceiver",
    "PartitionSupervisor",
    "StreamMessage",
    "StreamMultiplexer",
    "Subscription",
]
