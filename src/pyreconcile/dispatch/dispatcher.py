"""Fire-and-forget command delivery.

Each command gets exactly one send attempt. The outcome is logged and
counted, never retried; the next mismatching event triggers a fresh attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from pyreconcile.models.command import Command, encode_payload

_logger = logging.getLogger(__name__)


class CommandSender(Protocol):
    """Device-management send channel."""

    async def send(self, device_id: str, payload: bytes) -> Any:
        ...


@dataclass(frozen=True)
class SendOutcome:
    command: Command
    ok: bool
    detail: str


class CommandDispatcher:
    """Serialize commands and hand them to a :class:`CommandSender`."""

    def __init__(
        self,
        sender: CommandSender,
        *,
        on_result: Callable[[SendOutcome], None] | None = None,
    ) -> None:
        self._sender = sender
        self._on_result = on_result
        self._pending: set[asyncio.Task[SendOutcome]] = set()
        self.sent_count = 0
        self.failed_count = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def send(self, device_id: str, payload: str | bytes | Mapping[str, Any]) -> asyncio.Task[SendOutcome]:
        """Serialize *payload* (object → JSON, string → UTF-8) and send it."""
        return self.dispatch(Command(device_id=device_id, payload=encode_payload(payload)))

    def dispatch(self, command: Command) -> asyncio.Task[SendOutcome]:
        """Schedule one delivery attempt; never blocks the caller."""
        _logger.info("Sending message to %s: %s", command.device_id, command.payload_text())
        task = asyncio.get_running_loop().create_task(
            self._deliver(command),
            name=f"pyreconcile-send-{command.device_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight sends to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, command: Command) -> SendOutcome:
        try:
            result = await self._sender.send(command.device_id, command.payload)
        except Exception as exc:
            self.failed_count += 1
            outcome = SendOutcome(command=command, ok=False, detail=str(exc) or type(exc).__name__)
            _logger.warning("send error: %s (device=%s)", outcome.detail, command.device_id)
        else:
            self.sent_count += 1
            outcome = SendOutcome(command=command, ok=True, detail=type(result).__name__)
            _logger.info("send status: %s (device=%s)", outcome.detail, command.device_id)
        self._record(outcome)
        return outcome

    def _record(self, outcome: SendOutcome) -> None:
        if self._on_result is None:
            return
        try:
            self._on_result(outcome)
        except Exception:
            _logger.debug("on_result callback failed", exc_info=True)
