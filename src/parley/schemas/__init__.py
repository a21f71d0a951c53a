from .configs import (
    ParleySettings, AppConfig, LoggingConfig, HistoryConfig,
    AutoTurnConfig, ChatConfig
)
from .domain import Message, ChatHistory, ToolCall, FunctionCall, GroupMetadata, FinalizedResponse, WireFrame

# Protocol is usually imported specifically as needed,
# but we can export the base event and kinds.
from .protocol import BaseEvent, DeliveryEventKind

__all__ = [
    "ParleySettings",
    "AppConfig",
    "LoggingConfig",
    "HistoryConfig",
    "AutoTurnConfig",
    "ChatConfig",
    "Message",
    "ChatHistory",
    "ToolCall",
    "FunctionCall",
    "GroupMetadata",
    "FinalizedResponse",
    "WireFrame",
    "BaseEvent",
    "DeliveryEventKind"
]
