"""Process-wide desired-state store.

One writer (the refresh loop) and any number of readers. Replacement is a
single reference swap of an immutable snapshot, so readers see either the
old or the new document in full, never a mix, without any lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pyreconcile.exceptions import DesiredStateError
from pyreconcile.models.desired_state import DesiredState, DesiredStateSnapshot
from pyreconcile.state.sources import DesiredStateSource, parse_document

_logger = logging.getLogger(__name__)


class DesiredStateStore:
    """Holds the current :class:`DesiredStateSnapshot` and keeps it fresh."""

    def __init__(
        self,
        source: DesiredStateSource | None = None,
        *,
        initial: DesiredStateSnapshot | None = None,
        interval: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._snapshot = initial if initial is not None else DesiredStateSnapshot.default()
        self._interval = interval
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.refresh_count = 0
        self.failure_count = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> DesiredStateSnapshot:
        """The current complete snapshot. Hold on to it for consistent reads."""
        return self._snapshot

    def get(self, device_id: str) -> DesiredState | None:
        return self._snapshot.get(device_id)

    def replace(self, snapshot: DesiredStateSnapshot) -> None:
        self._snapshot = snapshot
        _logger.info(
            "Desired state replaced from %s (%d device(s))",
            snapshot.origin,
            len(snapshot),
        )

    def load_document(self, document: Any, *, origin: str = "document") -> DesiredStateSnapshot:
        """Validate *document* and swap it in; raises ``DesiredStateError`` and keeps the old one."""
        snapshot = DesiredStateSnapshot.from_document(document, origin=origin)
        self.replace(snapshot)
        return snapshot

    async def refresh(self) -> bool:
        """Reload from the source once. Failures are logged, never raised."""
        if self._source is None:
            return False
        try:
            text = await self._source.read()
            snapshot = parse_document(text, origin=self._source.location)
        except DesiredStateError as exc:
            self.failure_count += 1
            _logger.warning("Desired state refresh failed, keeping previous snapshot: %s", exc)
            return False
        self.refresh_count += 1
        if snapshot.as_document() != self._snapshot.as_document():
            self.replace(snapshot)
        else:
            self._snapshot = snapshot
        return True

    def start(self) -> asyncio.Task[None]:
        """Start the periodic refresh loop on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self._refresh_loop(),
                name="pyreconcile-desired-state-refresh",
            )
        return self._task

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._source is not None:
            await self._source.close()

    async def _refresh_loop(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                await self.refresh()
            except Exception:
                self.failure_count += 1
                _logger.exception("Unexpected desired state refresh error")
