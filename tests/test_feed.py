from __future__ import annotations

from fakes import BASE_TIME
from pyreconcile.models.event import Event
from pyreconcile.stream.feed import EventFeed
from pyreconcile.stream.receiver import PartitionFailure


def _event(device_id: str, offset: int = 0) -> Event:
    return Event(device_id=device_id, body={}, enqueued_time=BASE_TIME, offset=offset)


def test_filtered_views_see_only_their_device() -> None:
    feed = EventFeed()
    huzzah: list[Event] = []
    everything: list[Event] = []
    feed.for_device("huzzah").subscribe(huzzah.append)
    feed.subscribe(everything.append)

    feed.publish(_event("huzzah", 1))
    feed.publish(_event("rpi2", 2))

    assert [e.offset for e in huzzah] == [1]
    assert [e.offset for e in everything] == [1, 2]


def test_views_compose() -> None:
    feed = EventFeed()
    seen: list[Event] = []
    feed.for_device("huzzah").where(lambda e: (e.offset or 0) > 1).subscribe(seen.append)

    for offset in (1, 2, 3):
        feed.publish(_event("huzzah", offset))

    assert [e.offset for e in seen] == [2, 3]


def test_unsubscribed_observers_stop_receiving() -> None:
    feed = EventFeed()
    seen: list[Event] = []
    subscription = feed.subscribe(seen.append)
    feed.publish(_event("huzzah", 1))
    subscription.unsubscribe()
    feed.publish(_event("huzzah", 2))

    assert [e.offset for e in seen] == [1]
    assert not subscription.active
    assert feed.subscriber_count == 0


def test_failing_observer_does_not_affect_others() -> None:
    feed = EventFeed()
    seen: list[Event] = []

    def broken(event: Event) -> None:
        raise RuntimeError("boom")

    feed.subscribe(broken)
    feed.subscribe(seen.append)
    feed.publish(_event("huzzah"))

    assert len(seen) == 1


def test_failures_reach_filtered_views() -> None:
    feed = EventFeed()
    failures: list[PartitionFailure] = []
    feed.for_device("huzzah").subscribe(on_error=failures.append)

    feed.publish_failure(PartitionFailure(partition_id="2", error=RuntimeError("x"), attempts=1))

    assert [f.partition_id for f in failures] == ["2"]
