"""Custom exception hierarchy for pyreconcile."""

from __future__ import annotations


class ReconcileError(Exception):
    """Base exception for all pyreconcile errors."""


class ReconcileConfigError(ReconcileError):
    """Invalid or missing configuration."""


class DeviceConnectionError(ReconcileError):
    """The device-management send channel could not be opened.

    This is the only failure that stops the process at startup.
    """


class StreamError(ReconcileError):
    """Event-stream failure (discovery, attach or receive)."""

    def __init__(self, message: str, *, partition_id: str | None = None) -> None:
        self.partition_id = partition_id
        super().__init__(message)


class StreamTransientError(StreamError):
    """Retryable stream failure (connection drop, timeout, broker not ready)."""


class StreamRedirectError(StreamError):
    """The partition is now served elsewhere; reconnect to follow it.

    ``location`` is informational only (e.g. the new leader node) since the
    reconnect re-resolves the partition from fresh metadata.
    """

    def __init__(
        self,
        message: str,
        *,
        partition_id: str | None = None,
        location: str | None = None,
    ) -> None:
        self.location = location
        super().__init__(message, partition_id=partition_id)


class PartitionDiscoveryError(StreamError):
    """The topic or its partition set could not be resolved."""


class ReceiverStateError(StreamError):
    """``start_receiving`` called on a receiver that is already attached."""


class DesiredStateError(ReconcileError):
    """Desired-state document unreadable or invalid."""

    def __init__(self, message: str, *, location: str = "") -> None:
        self.location = location
        super().__init__(message)


class CommandDeliveryError(ReconcileError):
    """A command publish was rejected or did not complete in time."""

    def __init__(self, message: str, *, device_id: str = "") -> None:
        self.device_id = device_id
        super().__init__(message)
