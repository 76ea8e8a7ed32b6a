"""Push-based reconciliation: one diff per received event."""

from __future__ import annotations

import logging
from collections.abc import Container

from pyreconcile._redact import redact_for_log
from pyreconcile.dispatch.dispatcher import CommandDispatcher
from pyreconcile.models.event import Event
from pyreconcile.reconcile.rules import Correction, RuleRegistry
from pyreconcile.state.store import DesiredStateStore
from pyreconcile.stream.feed import EventFeed, Subscription

_logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Diff each incoming event against the desired state and dispatch corrections.

    The engine reads the store's snapshot once per event, so a concurrent
    refresh can never hand it half of one document and half of another.
    Unknown devices, non-object bodies and devices with no desired state are
    ignored without error.
    """

    def __init__(
        self,
        store: DesiredStateStore,
        dispatcher: CommandDispatcher,
        *,
        rules: RuleRegistry | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._rules = rules if rules is not None else RuleRegistry.default()
        self._subscriptions: list[Subscription] = []

    @property
    def rules(self) -> RuleRegistry:
        return self._rules

    def reconcile(self, event: Event) -> list[Correction]:
        """Compute corrections for *event* without sending anything."""
        rule = self._rules.get(event.device_id)
        if rule is None:
            return []
        if not isinstance(event.body, dict):
            _logger.debug("Skipping non-object body from %s", event.device_id)
            return []
        desired = self._store.snapshot().get(event.device_id)
        if desired is None:
            return []
        return rule.corrections(event.device_id, event.body, desired)

    def handle(self, event: Event) -> list[Correction]:
        """Reconcile *event* and dispatch every correction."""
        corrections = self.reconcile(event)
        for correction in corrections:
            mismatch = correction.mismatch
            _logger.warning(
                "Error: %s in unexpected state on %s: %r (expected %r)",
                mismatch.label,
                mismatch.device_id,
                mismatch.reported,
                mismatch.desired,
            )
            self._dispatcher.dispatch(correction.command)
        return corrections

    def attach(self, feed: EventFeed) -> Subscription:
        """Subscribe to events from registered devices.

        Registration is checked per event, so rules added after attaching
        take effect immediately.
        """
        subscription = feed.where(lambda event: event.device_id in self._rules).subscribe(self.handle)
        self._subscriptions.append(subscription)
        return subscription

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()


def log_device_events(feed: EventFeed, device_ids: Container[str]) -> Subscription:
    """Log every event from a device in *device_ids* at INFO.

    Membership is checked per event; pass the :class:`RuleRegistry` to follow
    registrations made later.
    """

    def _log(event: Event) -> None:
        _logger.info(
            "Received message from %s: %s @ %s",
            event.device_id,
            redact_for_log(event.body, max_string=256),
            event.enqueued_time.isoformat(),
        )

    return feed.where(lambda event: event.device_id in device_ids).subscribe(_log)
