"""Process configuration for pyreconcile."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyreconcile.connection import PLACEHOLDER_CONNECTION_STRING, ConnectionString

DEFAULT_COMMAND_TOPIC = "devices/{device_id}/messages/devicebound"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for partition attach/receive.

    Parameters
    ----------
    max_attempts : int
        Consecutive transient failures after which the partition is
        reported as failed.
    initial_delay : float
        Delay before the first retry, in seconds.
    max_delay : float
        Upper bound for a single delay.
    multiplier : float
        Growth factor between attempts.
    jitter : float
        Fraction of the delay added as random jitter.
    max_redirects : int
        Consecutive redirects followed before giving up.
    """

    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1
    max_redirects: int = 3

    def delay_for(self, attempt: int) -> float:
        """Base delay (without jitter) before retry number *attempt* (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


@dataclasses.dataclass(frozen=True)
class ReconcileConfig:
    """Service configuration.

    Parameters
    ----------
    connection_string : str
        Event-stream credential. The placeholder default fails at startup.
    desired_state_location : str
        Path or ``http(s)://`` URL of the desired-state JSON document.
    refresh_interval : float
        Seconds between desired-state reloads.
    command_broker_url : str
        ``mqtt://`` or ``mqtts://`` URL of the command broker.
    command_topic_template : str
        Publish topic for commands; ``{device_id}`` is substituted.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    send_timeout : float
        Seconds to wait for a command publish to be acknowledged.
    connect_timeout : float
        Seconds allowed for one partition attach or broker connect attempt.
    poll_timeout : float
        Seconds a receiver waits for records before polling again.
    retry : RetryPolicy
        Receiver retry/redirect policy.
    restart_failed_partitions : bool
        Rebuild a partition receiver after it reports a failure.
    partition_restart_delay : float
        Seconds to wait before rebuilding a failed partition.
    max_partition_restarts : int or None
        Per-partition rebuild cap; ``None`` means unbounded.
    start_offset : int or None
        Start every partition at this offset instead of "from now".
    """

    connection_string: str = PLACEHOLDER_CONNECTION_STRING
    desired_state_location: str = "expectedStates.json"
    refresh_interval: float = 5.0
    command_broker_url: str = "mqtts://localhost:8883"
    command_topic_template: str = DEFAULT_COMMAND_TOPIC
    mqtt_keepalive: int = 120
    send_timeout: float = 10.0
    connect_timeout: float = 30.0
    poll_timeout: float = 1.0
    retry: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)
    restart_failed_partitions: bool = True
    partition_restart_delay: float = 10.0
    max_partition_restarts: int | None = None
    start_offset: int | None = None

    def parsed_connection(self) -> ConnectionString:
        """Parse the connection string (raises ``ReconcileConfigError``)."""
        return ConnectionString.parse(self.connection_string)

    @classmethod
    def from_env(cls, **overrides: Any) -> ReconcileConfig:
        """Create configuration from environment variables.

        Reads ``IOTHUB_CONNECTION_STRING`` and optional ``RECONCILE_*``
        variables. Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        ReconcileConfig
            Populated configuration.
        """
        env = os.environ

        retry_kwargs: dict[str, Any] = {}
        _ENV_RETRY_MAP = {
            "RECONCILE_RETRY_MAX_ATTEMPTS": ("max_attempts", int),
            "RECONCILE_RETRY_INITIAL_DELAY": ("initial_delay", float),
            "RECONCILE_RETRY_MAX_DELAY": ("max_delay", float),
            "RECONCILE_RETRY_MULTIPLIER": ("multiplier", float),
            "RECONCILE_RETRY_JITTER": ("jitter", float),
            "RECONCILE_MAX_REDIRECTS": ("max_redirects", int),
        }
        for env_key, (field_name, convert) in _ENV_RETRY_MAP.items():
            val = env.get(env_key)
            if val is not None:
                retry_kwargs[field_name] = convert(val)

        retry_overrides = overrides.pop("retry", None)
        if isinstance(retry_overrides, dict):
            retry_kwargs.update(retry_overrides)
        elif isinstance(retry_overrides, RetryPolicy):
            retry_kwargs = dataclasses.asdict(retry_overrides)

        config_kwargs: dict[str, Any] = {"retry": RetryPolicy(**retry_kwargs)}

        _ENV_STR_MAP = {
            "IOTHUB_CONNECTION_STRING": "connection_string",
            "RECONCILE_DESIRED_STATE": "desired_state_location",
            "RECONCILE_COMMAND_BROKER": "command_broker_url",
            "RECONCILE_COMMAND_TOPIC": "command_topic_template",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP = {
            "RECONCILE_REFRESH_INTERVAL": ("refresh_interval", float),
            "RECONCILE_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "RECONCILE_SEND_TIMEOUT": ("send_timeout", float),
            "RECONCILE_CONNECT_TIMEOUT": ("connect_timeout", float),
            "RECONCILE_POLL_TIMEOUT": ("poll_timeout", float),
            "RECONCILE_PARTITION_RESTART_DELAY": ("partition_restart_delay", float),
            "RECONCILE_MAX_PARTITION_RESTARTS": ("max_partition_restarts", int),
            "RECONCILE_START_OFFSET": ("start_offset", int),
        }
        for env_key, (field_name, convert) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = convert(val)

        if "restart_failed_partitions" not in overrides:
            config_kwargs["restart_failed_partitions"] = _env_bool(
                env.get("RECONCILE_RESTART_FAILED_PARTITIONS"),
                True,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
