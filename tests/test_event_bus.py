"""Tests for parley.synapse.event_bus: EventBus."""

import pytest

from parley.schemas.protocol.events.base import BaseEvent
from parley.schemas.protocol.events.delivery import DeliveryEventKind, GroupCompleteEvent
from parley.synapse.event_bus import EventBus


@pytest.mark.asyncio
async def test_sync_and_async_subscribers_receive_event():
    bus = EventBus()
    received = []

    async def on_async(event):
        received.append(("async", event.group_id))

    bus.subscribe(DeliveryEventKind.GROUP_COMPLETE, lambda e: received.append(("sync", e.group_id)))
    bus.subscribe("turns.group_complete", on_async)

    await bus.publish(GroupCompleteEvent(group_id="g", delivered=2))

    assert sorted(received) == [("async", "g"), ("sync", "g")]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_affect_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(DeliveryEventKind.GROUP_COMPLETE, broken)
    bus.subscribe(DeliveryEventKind.GROUP_COMPLETE, received.append)

    await bus.publish(GroupCompleteEvent(group_id="g"))
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe_handle():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(DeliveryEventKind.GROUP_COMPLETE, received.append)

    unsubscribe()
    await bus.publish(GroupCompleteEvent(group_id="g"))

    assert received == []
    assert bus.subscriber_count(DeliveryEventKind.GROUP_COMPLETE) == 0


@pytest.mark.asyncio
async def test_unsubscribe_receiver_removes_bound_methods():
    class Listener:
        def __init__(self):
            self.seen = []

        def on_group(self, event):
            self.seen.append(event)

        def on_cancel(self, event):
            self.seen.append(event)

    bus = EventBus()
    listener = Listener()
    bus.subscribe(DeliveryEventKind.GROUP_COMPLETE, listener.on_group)
    bus.subscribe(DeliveryEventKind.TURNS_CANCELED, listener.on_cancel)

    bus.unsubscribe_receiver(listener)
    await bus.publish(GroupCompleteEvent(group_id="g"))

    assert listener.seen == []
    assert bus.subscriber_count(DeliveryEventKind.TURNS_CANCELED) == 0


@pytest.mark.asyncio
async def test_publish_rejects_non_events():
    with pytest.raises(TypeError):
        await EventBus().publish({"name": "turns.group_complete"})


@pytest.mark.asyncio
async def test_event_without_subscribers_is_noop():
    await EventBus().publish(BaseEvent(name="nobody.listens", source="test"))


@pytest.mark.asyncio
async def test_unhashable_receiver_can_subscribe_and_disconnect():
    bus = EventBus()
    seen = []
    bus.subscribe(DeliveryEventKind.GROUP_COMPLETE, seen.append)
    bus.subscribe(DeliveryEventKind.TURNS_CANCELED, seen.append)

    await bus.publish(GroupCompleteEvent(group_id="g"))
    assert len(seen) == 1

    bus.unsubscribe_receiver(seen)
    await bus.publish(GroupCompleteEvent(group_id="g"))

    assert len(seen) == 1
    assert bus.subscriber_count(DeliveryEventKind.GROUP_COMPLETE) == 0
    assert bus.subscriber_count(DeliveryEventKind.TURNS_CANCELED) == 0
