"""Shared fixtures: virtual clock, event recorder, history store factory."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from parley.chat.history import HistoryStore
from parley.schemas.protocol.events.base import BaseEvent
from parley.schemas.protocol.events.delivery import DeliveryEventKind
from parley.synapse.event_bus import EventBus
from parley.utils.clock import VirtualClock

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Absolute timestamp `seconds` after T0."""
    return T0 + timedelta(seconds=seconds)


class EventRecorder:
    """Subscribes to every delivery event kind and keeps them in arrival order."""

    def __init__(self, bus: EventBus):
        self.events: List[BaseEvent] = []
        for kind in DeliveryEventKind:
            bus.subscribe(kind, self._record)

    async def _record(self, event: BaseEvent):
        self.events.append(event)

    def of(self, kind: DeliveryEventKind) -> List[BaseEvent]:
        return [e for e in self.events if e.name == kind.value]

    def names(self) -> List[str]:
        return [e.name for e in self.events]


class FixedRandom:
    """Stand-in for random.Random returning a constant."""

    def __init__(self, value: float = 0.5):
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock(start=T0)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def make_store(clock):
    def factory(history_size: int = 50) -> HistoryStore:
        return HistoryStore(history_size=history_size, clock=clock)
    return factory
