"""Hot, multi-subscriber event feed.

Observers see only what is published after they subscribe. Partition
failures travel on a separate error channel and pass through every filtered
view, since a failure is not tied to a device.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from pyreconcile.models.event import Event
from pyreconcile.stream.receiver import EventCallback, FailureCallback, PartitionFailure

_logger = logging.getLogger(__name__)

EventPredicate = Callable[[Event], bool]


@dataclass(eq=False)
class _Observer:
    on_event: EventCallback | None
    on_error: FailureCallback | None
    predicate: EventPredicate | None


class Subscription:
    """Handle returned by ``subscribe``; call :meth:`unsubscribe` to detach."""

    def __init__(self, feed: EventFeed, observer: _Observer) -> None:
        self._feed = feed
        self._observer = observer

    @property
    def active(self) -> bool:
        return self._feed._has(self._observer)

    def unsubscribe(self) -> None:
        self._feed._remove(self._observer)


class EventFeed:
    """Broadcasts events and failures to the observers attached at publish time."""

    def __init__(self) -> None:
        self._observers: list[_Observer] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._observers)

    def subscribe(
        self,
        on_event: EventCallback | None = None,
        on_error: FailureCallback | None = None,
    ) -> Subscription:
        return self._attach(on_event, on_error, None)

    def where(self, predicate: EventPredicate) -> FeedView:
        return FeedView(self, predicate)

    def for_device(self, device_id: str) -> FeedView:
        return self.where(lambda event: event.device_id == device_id)

    def publish(self, event: Event) -> None:
        for observer in tuple(self._observers):
            if observer.on_event is None:
                continue
            if observer.predicate is not None and not self._matches(observer.predicate, event):
                continue
            try:
                observer.on_event(event)
            except Exception:
                _logger.exception("Observer failed for event from %s", event.device_id)

    def publish_failure(self, failure: PartitionFailure) -> None:
        for observer in tuple(self._observers):
            if observer.on_error is None:
                continue
            try:
                observer.on_error(failure)
            except Exception:
                _logger.exception("Error observer failed for partition %s", failure.partition_id)

    @staticmethod
    def _matches(predicate: EventPredicate, event: Event) -> bool:
        try:
            return bool(predicate(event))
        except Exception:
            _logger.debug("Feed predicate raised; treating as no match", exc_info=True)
            return False

    def _attach(
        self,
        on_event: EventCallback | None,
        on_error: FailureCallback | None,
        predicate: EventPredicate | None,
    ) -> Subscription:
        observer = _Observer(on_event=on_event, on_error=on_error, predicate=predicate)
        self._observers.append(observer)
        return Subscription(self, observer)

    def _has(self, observer: _Observer) -> bool:
        return any(o is observer for o in self._observers)

    def _remove(self, observer: _Observer) -> None:
        self._observers = [o for o in self._observers if o is not observer]


class FeedView:
    """A filtered view over an :class:`EventFeed`; views compose with ``where``."""

    def __init__(self, feed: EventFeed, predicate: EventPredicate) -> None:
        self._feed = feed
        self._predicate = predicate

    def where(self, predicate: EventPredicate) -> FeedView:
        outer = self._predicate
        return FeedView(self._feed, lambda event: outer(event) and predicate(event))

    def subscribe(
        self,
        on_event: EventCallback | None = None,
        on_error: FailureCallback | None = None,
    ) -> Subscription:
        return self._feed._attach(on_event, on_error, self._predicate)
