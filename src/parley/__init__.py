"""
parley: 对话轮次投递核心

把一次 (流式) 模型回复变成按真人节奏投递的多条消息，
并维护一份按时间排序、容量受限、可重组分组的对话历史。
"""
from parley.chat import Conversation, HistoryStore, StreamAggregator, ChatRequestBuilder, FollowUpController
from parley.turns import TurnDeliveryEngine, TurnPacer
from parley.synapse import EventBus
from parley.schemas import (
    ParleySettings, AutoTurnConfig, ChatConfig, HistoryConfig,
    Message, ToolCall, FunctionCall, GroupMetadata, FinalizedResponse, WireFrame,
    DeliveryEventKind
)
from parley.core.errors import (
    ParleyError, ConfigurationError, TransportError, MessageValidationError, CollaboratorError
)

__version__ = "0.1.0"

__all__ = [
    "Conversation", "HistoryStore", "StreamAggregator", "ChatRequestBuilder", "FollowUpController",
    "TurnDeliveryEngine", "TurnPacer",
    "EventBus",
    "ParleySettings", "AutoTurnConfig", "ChatConfig", "HistoryConfig",
    "Message", "ToolCall", "FunctionCall", "GroupMetadata", "FinalizedResponse", "WireFrame",
    "DeliveryEventKind",
    "ParleyError", "ConfigurationError", "TransportError", "MessageValidationError", "CollaboratorError",
]
