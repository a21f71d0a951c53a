from .history import HistoryStore
from .streaming import StreamAggregator
from .request_builder import ChatRequestBuilder
from .follow_up import FollowUpController
from .conversation import Conversation

__all__ = [
    "HistoryStore",
    "StreamAggregator",
    "ChatRequestBuilder",
    "FollowUpController",
    "Conversation"
]
