"""Per-partition receiver with bounded retry and redirect following."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pyreconcile.config import RetryPolicy
from pyreconcile.exceptions import ReceiverStateError, StreamRedirectError, StreamTransientError
from pyreconcile.models.event import Event
from pyreconcile.stream.codec import decode_event
from pyreconcile.stream.source import Cursor, EventSource, PartitionLink

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionFailure:
    """Terminal failure of one partition receiver, surfaced on the error channel."""

    partition_id: str
    error: BaseException
    attempts: int
    last_offset: int | None = None

    def describe(self) -> str:
        return f"partition {self.partition_id} failed after {self.attempts} attempt(s): {self.error}"


EventCallback = Callable[[Event], None]
FailureCallback = Callable[[PartitionFailure], None]


class PartitionReceiver:
    """Attach to one partition and emit decoded events or a failure.

    Transient failures are retried with exponential backoff, redirects are
    followed immediately, and only when either budget is exhausted (or a
    non-recoverable error occurs) is a :class:`PartitionFailure` emitted.
    Reconnects resume right after the last delivered offset.
    """

    def __init__(
        self,
        source: EventSource,
        partition_id: str,
        *,
        on_event: EventCallback,
        on_error: FailureCallback,
        retry: RetryPolicy | None = None,
        connect_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._source = source
        self._partition_id = partition_id
        self._on_event = on_event
        self._on_error = on_error
        self._retry = retry or RetryPolicy()
        self._connect_timeout = connect_timeout
        self._sleep = sleep
        self._rng = rng
        self._task: asyncio.Task[None] | None = None
        self._link: PartitionLink | None = None
        self._last_offset: int | None = None
        self._attempts = 0
        self._redirects = 0

    @property
    def partition_id(self) -> str:
        return self._partition_id

    @property
    def last_offset(self) -> int | None:
        """Offset of the last record consumed from the partition."""
        return self._last_offset

    @property
    def is_attached(self) -> bool:
        return self._link is not None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start_receiving(self, cursor: Cursor) -> bool:
        """Begin receiving from *cursor*.

        Returns once the first attach succeeded (``True``) or the receiver
        gave up (``False``; the failure has been emitted). Never raises for
        stream failures.
        """
        if self.is_running:
            raise ReceiverStateError(
                f"receiver for partition {self._partition_id} is already started",
                partition_id=self._partition_id,
            )
        loop = asyncio.get_running_loop()
        attached: asyncio.Future[bool] = loop.create_future()
        self._attempts = 0
        self._redirects = 0
        self._task = loop.create_task(
            self._run(cursor, attached),
            name=f"pyreconcile-partition-{self._partition_id}",
        )
        return await asyncio.shield(attached)

    async def start_receiving_from_offset(self, offset: int) -> bool:
        return await self.start_receiving(Cursor.from_offset(offset))

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def resume_cursor(self, fallback: Cursor) -> Cursor:
        """Cursor that continues right after the last consumed record."""
        if self._last_offset is None:
            return fallback
        return Cursor.from_offset(self._last_offset + 1)

    async def _run(self, cursor: Cursor, attached: asyncio.Future[bool]) -> None:
        position = cursor
        try:
            while True:
                try:
                    link = await asyncio.wait_for(
                        self._source.open_partition(self._partition_id, position),
                        self._connect_timeout,
                    )
                except StreamRedirectError as exc:
                    if not self._note_redirect(exc):
                        return
                    continue
                except (StreamTransientError, TimeoutError) as exc:
                    if not await self._note_transient(exc):
                        return
                    continue
                except Exception as exc:
                    self._fail(exc)
                    return

                self._link = link
                if not attached.done():
                    attached.set_result(True)
                    _logger.info("Receiver started partition=%s", self._partition_id)
                else:
                    _logger.info(
                        "Receiver reattached partition=%s offset=%s",
                        self._partition_id,
                        position.offset,
                    )

                try:
                    await self._pump(link, cursor)
                except StreamRedirectError as exc:
                    if not self._note_redirect(exc):
                        return
                except StreamTransientError as exc:
                    if not await self._note_transient(exc):
                        return
                except Exception as exc:
                    self._fail(exc)
                    return
                finally:
                    self._link = None
                    await link.close()
                position = self.resume_cursor(cursor)
        finally:
            if not attached.done():
                attached.set_result(False)

    async def _pump(self, link: PartitionLink, cursor: Cursor) -> None:
        while True:
            batch = await link.receive()
            self._attempts = 0
            self._redirects = 0
            for message in batch:
                self._last_offset = message.offset
                event = decode_event(message)
                if event is None or not cursor.admits(event.enqueued_time):
                    continue
                self._emit(event)

    def _emit(self, event: Event) -> None:
        try:
            self._on_event(event)
        except Exception:
            _logger.exception("Event callback failed partition=%s", self._partition_id)

    def _note_redirect(self, exc: StreamRedirectError) -> bool:
        self._redirects += 1
        if self._redirects > self._retry.max_redirects:
            self._fail(exc)
            return False
        _logger.warning(
            "Partition %s redirected (%d/%d) location=%s",
            self._partition_id,
            self._redirects,
            self._retry.max_redirects,
            exc.location,
        )
        return True

    async def _note_transient(self, exc: BaseException) -> bool:
        self._attempts += 1
        if self._attempts >= self._retry.max_attempts:
            self._fail(exc)
            return False
        delay = self._retry.delay_for(self._attempts)
        delay += delay * self._retry.jitter * self._rng()
        _logger.warning(
            "Partition %s transient failure (attempt %d/%d), retrying in %.2fs: %s",
            self._partition_id,
            self._attempts,
            self._retry.max_attempts,
            delay,
            exc,
        )
        await self._sleep(delay)
        return True

    def _fail(self, exc: BaseException) -> None:
        failure = PartitionFailure(
            partition_id=self._partition_id,
            error=exc,
            attempts=max(self._attempts + self._redirects, 1),
            last_offset=self._last_offset,
        )
        _logger.error("Receiver error: %s", failure.describe())
        try:
            self._on_error(failure)
        except Exception:
            _logger.exception("Error callback failed partition=%s", self._partition_id)
