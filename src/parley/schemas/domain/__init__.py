from .chat import Message, ChatHistory, ToolCall, FunctionCall, GroupMetadata, Role
from .response import (
    WireFrame,
    ChatCompletionChunk,
    ChatCompletionResponse,
    FinalizedResponse
)

__all__ = [
    "Message", "ChatHistory", "ToolCall", "FunctionCall", "GroupMetadata", "Role",
    "WireFrame", "ChatCompletionChunk", "ChatCompletionResponse", "FinalizedResponse"
]
