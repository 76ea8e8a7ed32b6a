"""Rebuild individual failed partitions without touching the others."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pyreconcile.stream.feed import Subscription
from pyreconcile.stream.multiplexer import StreamMultiplexer
from pyreconcile.stream.receiver import PartitionFailure

_logger = logging.getLogger(__name__)


class PartitionSupervisor:
    """Watch the feed's error channel and restart the partition that failed."""

    def __init__(
        self,
        multiplexer: StreamMultiplexer,
        *,
        restart_delay: float = 10.0,
        max_restarts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._multiplexer = multiplexer
        self._restart_delay = restart_delay
        self._max_restarts = max_restarts
        self._sleep = sleep
        self._restarts: dict[str, int] = {}
        self._pending: dict[str, asyncio.Task[None]] = {}
        self._subscription: Subscription | None = None

    @property
    def restart_counts(self) -> dict[str, int]:
        return dict(self._restarts)

    def attach(self) -> Subscription:
        if self._subscription is None:
            self._subscription = self._multiplexer.feed.subscribe(on_error=self._on_failure)
        return self._subscription

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait for scheduled restarts to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending.values()), return_exceptions=True)

    def _on_failure(self, failure: PartitionFailure) -> None:
        partition_id = failure.partition_id
        if partition_id in self._pending:
            # A restart loop for this partition is already running and will
            # observe the outcome itself.
            return
        if not self._consume_restart(partition_id):
            return
        self._pending[partition_id] = asyncio.get_running_loop().create_task(
            self._restart(partition_id),
            name=f"pyreconcile-restart-{partition_id}",
        )

    def _consume_restart(self, partition_id: str) -> bool:
        count = self._restarts.get(partition_id, 0)
        if self._max_restarts is not None and count >= self._max_restarts:
            _logger.error(
                "Partition %s exceeded %d restart(s); leaving it stopped",
                partition_id,
                self._max_restarts,
            )
            return False
        self._restarts[partition_id] = count + 1
        return True

    async def _restart(self, partition_id: str) -> None:
        try:
            while True:
                await self._sleep(self._restart_delay)
                attached = await self._multiplexer.restart_partition(partition_id)
                if attached:
                    _logger.info("Partition %s restarted", partition_id)
                    return
                _logger.warning("Partition %s restart did not attach", partition_id)
                if not self._consume_restart(partition_id):
                    return
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.exception("Partition %s restart failed", partition_id)
        finally:
            self._pending.pop(partition_id, None)
