"""pyreconcile - reconcile device telemetry from a partitioned event stream against desired state."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyreconcile")
except PackageNotFoundError:
    __version__ = "0+local"
from pyreconcile.config import ReconcileConfig, RetryPolicy
from pyreconcile.connection import ConnectionString
from pyreconcile.dispatch import CommandDispatcher, CommandSender, MqttCommandSender
from pyreconcile.exceptions import (
    CommandDeliveryError,
    DesiredStateError,
    DeviceConnectionError,
    PartitionDiscoveryError,
    ReceiverStateError,
    ReconcileConfigError,
    ReconcileError,
    StreamError,
    StreamRedirectError,
    StreamTransientError,
)
from pyreconcile.models import Command, DesiredState, DesiredStateSnapshot, Event
from pyreconcile.reconcile import DeviceRule, ReconciliationEngine, RuleRegistry
from pyreconcile.service import ReconcileService
from pyreconcile.state import DesiredStateStore
from pyreconcile.stream import (
    Cursor,
    EventFeed,
    PartitionFailure,
    PartitionReceiver,
    PartitionSupervisor,
    StreamMultiplexer,
)

__all__ = [
    "__version__",
    "Command",
    "CommandDeliveryError",
    "CommandDispatcher",
    "CommandSender",
    "ConnectionString",
    "Cursor",
    "DesiredState",
    "DesiredStateError",
    "DesiredStateSnapshot",
    "DesiredStateStore",
    "DeviceConnectionError",
    "DeviceRule",
    "Event",
    "EventFeed",
    "MqttCommandSender",
    "PartitionDiscoveryError",
    "PartitionFailure",
    "PartitionReceiver",
    "PartitionSupervisor",
    "ReceiverStateError",
    "ReconcileConfig",
    "ReconcileConfigError",
    "ReconcileError",
    "ReconcileService",
    "ReconciliationEngine",
    "RetryPolicy",
    "RuleRegistry",
    "StreamError",
    "StreamMultiplexer",
    "StreamRedirectError",
    "StreamTransientError",
]
