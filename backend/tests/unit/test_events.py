"""
Unit tests for the queue event bus.
"""
import pytest

from waitline.lib.events import EventBus, QueueEvent, QueueEventType


def make_event(event_type=QueueEventType.ENTRY_ADDED, **kwargs):
    return QueueEvent(event_type=event_type, queue_id="q-1", **kwargs)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_publish_to_sync_and_async_handlers():
    bus = EventBus()
    received = []

    def sync_handler(event):
        received.append(("sync", event.event_type))

    async def async_handler(event):
        received.append(("async", event.event_type))

    bus.subscribe(QueueEventType.ENTRY_ADDED, sync_handler)
    bus.subscribe("entry_added", async_handler)

    await bus.publish(make_event())

    assert received == [
        ("sync", QueueEventType.ENTRY_ADDED),
        ("async", QueueEventType.ENTRY_ADDED),
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_subscribe_all_receives_every_type():
    bus = EventBus()
    received = []
    bus.subscribe_all(received.append)

    await bus.publish_many([
        make_event(QueueEventType.ENTRY_CALLED),
        make_event(QueueEventType.ACCEPTING_CHANGED),
    ])

    assert [e.event_type for e in received] == [
        QueueEventType.ENTRY_CALLED,
        QueueEventType.ACCEPTING_CHANGED,
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("socket gone")

    bus.subscribe(QueueEventType.ENTRY_COMPLETED, broken)
    bus.subscribe(QueueEventType.ENTRY_COMPLETED, received.append)

    await bus.publish(make_event(QueueEventType.ENTRY_COMPLETED))

    assert len(received) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unsubscribe_and_clear():
    bus = EventBus()
    received = []
    bus.subscribe(QueueEventType.ENTRY_REQUEUED, received.append)

    bus.unsubscribe(QueueEventType.ENTRY_REQUEUED, received.append)
    bus.unsubscribe(QueueEventType.ENTRY_REQUEUED, received.append)
    await bus.publish(make_event(QueueEventType.ENTRY_REQUEUED))
    assert received == []

    bus.subscribe(QueueEventType.ENTRY_REQUEUED, received.append)
    bus.clear_handlers()
    await bus.publish(make_event(QueueEventType.ENTRY_REQUEUED))
    assert received == []


@pytest.mark.unit
def test_events_are_immutable():
    event = make_event(entry_id="e-1", payload={"position": 1})

    with pytest.raises(AttributeError):
        event.queue_id = "other"

    assert event.event_id
    assert event.occurred_at.tzinfo is not None
