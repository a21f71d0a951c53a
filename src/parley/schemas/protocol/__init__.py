from .events.base import BaseEvent
from .events.delivery import (
    DeliveryEventKind,
    TurnDeliveredEvent, GroupCompleteEvent, TurnsCanceledEvent,
    ImageStartEvent, ImageCompleteEvent, ImageErrorEvent,
    StreamErrorEvent, MessageTokensEvent, MessageCompleteEvent,
    FollowUpErrorEvent
)

__all__ = [
    "BaseEvent",
    "DeliveryEventKind",
    "TurnDeliveredEvent", "GroupCompleteEvent", "TurnsCanceledEvent",
    "ImageStartEvent", "ImageCompleteEvent", "ImageErrorEvent",
    "StreamErrorEvent", "MessageTokensEvent", "MessageCompleteEvent",
    "FollowUpErrorEvent"
]
