from enum import Enum
from typing import List, Optional
from pydantic import Field

from .base import BaseEvent
from parley.core.errors import CollaboratorError, TransportError
from parley.schemas.domain.chat import Message


class DeliveryEventKind(str, Enum):
    """投递核心对外发布的事件类型"""
    TURN_DELIVERED = "turns.delivered"        # 单个轮次已投递
    GROUP_COMPLETE = "turns.group_complete"   # 一个分组的所有轮次都已处理
    TURNS_CANCELED = "turns.canceled"         # 待投递轮次被作废
    IMAGE_START = "image.start"
    IMAGE_COMPLETE = "image.complete"
    IMAGE_ERROR = "image.error"
    STREAM_ERROR = "stream.error"             # 传输帧损坏 / 连接中断
    MESSAGE_TOKENS = "message.tokens"         # 流式文本增量
    MESSAGE_COMPLETE = "message.complete"     # 未拆分的完整回复已入库
    FOLLOW_UP_ERROR = "follow_up.error"


class TurnDeliveredEvent(BaseEvent):
    name: str = DeliveryEventKind.TURN_DELIVERED.value
    source: str = "Turns"
    group_id: str
    message_index: int
    total_in_group: int
    content: str


class GroupCompleteEvent(BaseEvent):
    name: str = DeliveryEventKind.GROUP_COMPLETE.value
    source: str = "Turns"
    group_id: str
    delivered: int = Field(0, description="该分组实际投递的片段数")


class TurnsCanceledEvent(BaseEvent):
    name: str = DeliveryEventKind.TURNS_CANCELED.value
    source: str = "Turns"
    count: int
    epoch: int


class ImageStartEvent(BaseEvent):
    name: str = DeliveryEventKind.IMAGE_START.value
    source: str = "Turns"
    prompt: str
    group_id: Optional[str] = None


class ImageCompleteEvent(BaseEvent):
    name: str = DeliveryEventKind.IMAGE_COMPLETE.value
    source: str = "Turns"
    prompt: str
    url: str
    group_id: Optional[str] = None


class ImageErrorEvent(BaseEvent):
    name: str = DeliveryEventKind.IMAGE_ERROR.value
    source: str = "Turns"
    prompt: str
    error: CollaboratorError
    group_id: Optional[str] = None


class StreamErrorEvent(BaseEvent):
    name: str = DeliveryEventKind.STREAM_ERROR.value
    source: str = "Stream"
    error: TransportError
    partial_content: Optional[str] = None


class MessageTokensEvent(BaseEvent):
    name: str = DeliveryEventKind.MESSAGE_TOKENS.value
    source: str = "Stream"
    delta: str


class MessageCompleteEvent(BaseEvent):
    name: str = DeliveryEventKind.MESSAGE_COMPLETE.value
    source: str = "Conversation"
    message: Message
    compliance_violations: Optional[List[str]] = None


class FollowUpErrorEvent(BaseEvent):
    name: str = DeliveryEventKind.FOLLOW_UP_ERROR.value
    source: str = "FollowUp"
    error: CollaboratorError
