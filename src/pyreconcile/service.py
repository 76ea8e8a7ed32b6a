"""Service wiring: send channel, desired state, stream, engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pyreconcile.config import ReconcileConfig
from pyreconcile.dispatch.dispatcher import CommandDispatcher, CommandSender
from pyreconcile.dispatch.mqtt import MqttCommandSender, parse_broker_url
from pyreconcile.exceptions import ReconcileError
from pyreconcile.reconcile.engine import ReconciliationEngine, log_device_events
from pyreconcile.reconcile.rules import RuleRegistry
from pyreconcile.state.sources import DesiredStateSource, source_for
from pyreconcile.state.store import DesiredStateStore
from pyreconcile.stream.feed import Subscription
from pyreconcile.stream.kafka import KafkaEventSource
from pyreconcile.stream.multiplexer import StreamMultiplexer
from pyreconcile.stream.source import Cursor, EventSource
from pyreconcile.stream.supervisor import PartitionSupervisor

_logger = logging.getLogger(__name__)


class ReconcileService:
    """Run the ingestion → reconciliation → dispatch pipeline.

    Usage::

        async with ReconcileService(ReconcileConfig.from_env()) as service:
            await service.wait_closed()

    Collaborators can be injected (tests, alternative transports); anything
    not injected is built from the configuration and owned by the service.
    """

    def __init__(
        self,
        config: ReconcileConfig,
        *,
        source: EventSource | None = None,
        sender: CommandSender | None = None,
        desired_source: DesiredStateSource | None = None,
        rules: RuleRegistry | None = None,
    ) -> None:
        self._config = config
        self._source = source
        self._sender = sender
        self._owned_sender: MqttCommandSender | None = None
        self._desired_source = desired_source
        self._rules = rules if rules is not None else RuleRegistry.default()
        self._store: DesiredStateStore | None = None
        self._dispatcher: CommandDispatcher | None = None
        self._multiplexer: StreamMultiplexer | None = None
        self._engine: ReconciliationEngine | None = None
        self._supervisor: PartitionSupervisor | None = None
        self._log_subscriptions: list[Subscription] = []
        self._closed = asyncio.Event()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ReconcileService:
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def store(self) -> DesiredStateStore:
        return self._require(self._store)

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._require(self._dispatcher)

    @property
    def multiplexer(self) -> StreamMultiplexer:
        return self._require(self._multiplexer)

    @property
    def engine(self) -> ReconciliationEngine:
        return self._require(self._engine)

    @staticmethod
    def _require(value: Any) -> Any:
        if value is None:
            raise ReconcileError("Service not started. Use 'async with ReconcileService(...) as service:'")
        return value

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bring the pipeline up; connection failures propagate (fatal)."""
        config = self._config
        connection = None
        if self._source is None or self._sender is None:
            connection = config.parsed_connection()
            _logger.info("Using connection %s", connection.redacted())

        sender = self._sender
        if sender is None:
            assert connection is not None  # noqa: S101
            self._owned_sender = MqttCommandSender(
                broker=parse_broker_url(config.command_broker_url),
                username=connection.shared_access_key_name,
                password=connection.shared_access_key,
                topic_template=config.command_topic_template,
                keepalive=config.mqtt_keepalive,
                connect_timeout=config.connect_timeout,
                send_timeout=config.send_timeout,
                logger=_logger,
            )
            await self._owned_sender.open()
            sender = self._owned_sender
        self._dispatcher = CommandDispatcher(sender)

        desired_source = self._desired_source or source_for(config.desired_state_location)
        self._store = DesiredStateStore(desired_source, interval=config.refresh_interval)
        self._store.start()

        source = self._source
        if source is None:
            assert connection is not None  # noqa: S101
            source = KafkaEventSource(
                connection,
                poll_timeout=config.poll_timeout,
                request_timeout=config.connect_timeout,
            )
        self._multiplexer = StreamMultiplexer(
            source,
            retry=config.retry,
            connect_timeout=config.connect_timeout,
        )
        cursor = Cursor.from_offset(config.start_offset) if config.start_offset is not None else Cursor.now()
        await self._multiplexer.bind(cursor)

        self._engine = ReconciliationEngine(self._store, self._dispatcher, rules=self._rules)
        self._engine.attach(self._multiplexer.feed)
        self._log_subscriptions = [log_device_events(self._multiplexer.feed, self._rules)]

        if config.restart_failed_partitions:
            self._supervisor = PartitionSupervisor(
                self._multiplexer,
                restart_delay=config.partition_restart_delay,
                max_restarts=config.max_partition_restarts,
            )
            self._supervisor.attach()

        self._multiplexer.connect()
        _logger.info("Reconciling %d device kind(s)", len(self._rules))

    async def stop(self) -> None:
        """Tear down in reverse order; safe to call more than once."""
        if self._supervisor is not None:
            await self._supervisor.close()
            self._supervisor = None
        if self._engine is not None:
            self._engine.detach()
        for subscription in self._log_subscriptions:
            subscription.unsubscribe()
        self._log_subscriptions.clear()
        if self._multiplexer is not None:
            await self._multiplexer.close()
        if self._store is not None:
            await self._store.stop()
        if self._dispatcher is not None:
            await self._dispatcher.drain()
        if self._owned_sender is not None:
            await self._owned_sender.close()
            self._owned_sender = None
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()
