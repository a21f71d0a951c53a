from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

Role = Literal["system", "user", "assistant", "tool"]


def _ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    # 无时区的时间一律视为 UTC，避免 naive/aware 混合比较
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FunctionCall(BaseModel):
    name: str = Field(default="", description="被调用的函数名")
    arguments: str = Field(default="", description="JSON 编码的参数字符串 (流式时逐段拼接)")


class ToolCall(BaseModel):
    """助手发起的一次工具调用 (OpenAI 格式)"""
    id: str = Field(..., description="工具调用 ID")
    type: Literal["function"] = "function"
    function: FunctionCall = Field(default_factory=FunctionCall)


class GroupMetadata(BaseModel):
    """
    分组元数据 (Group Metadata)

    标记一条消息是某个被拆分成多轮投递的逻辑回复中的一个片段。
    group_timestamp 把同组所有片段锚定到同一个逻辑时刻，
    processed_timestamp 则是该片段真正投递的时刻 (随延迟而不同)。
    """
    group_id: str
    message_index: int = Field(..., ge=0)
    total_in_group: int = Field(..., ge=1)
    group_timestamp: Optional[datetime] = None
    processed_timestamp: Optional[datetime] = None

    @field_validator("group_timestamp", "processed_timestamp")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_aware(value)


class Message(BaseModel):
    """
    基础对话消息模型 (Message Schema)

    用于在各层之间传递对话数据，也用于存储历史记录。
    分组字段 (group_id 等) 仅用于展示节奏，出站请求前会被重组合并。
    """
    role: Role = Field(..., description="消息角色 (OpenAI 格式)")
    content: Optional[str] = Field(None, description="消息文本内容 (仅工具调用/纯推理的助手消息可为空)")
    name: Optional[str] = None
    reasoning: Optional[str] = Field(None, description="从 <think> 块中提取出的推理内容")
    timestamp: Optional[datetime] = Field(None, description="消息生成时间 (入库前必定被设置)")
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    compliance_violations: Optional[List[str]] = None

    group_id: Optional[str] = None
    message_index: Optional[int] = None
    total_in_group: Optional[int] = None
    group_timestamp: Optional[datetime] = None

    @field_validator("timestamp", "group_timestamp")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_aware(value)

    @model_validator(mode="after")
    def check_role_invariants(self) -> "Message":
        if self.role in ("user", "system") and self.content is None:
            raise ValueError(f"{self.role} message requires content")
        if self.role == "tool":
            if not self.content or not self.tool_call_id:
                raise ValueError("tool message requires both content and tool_call_id")
        if self.role == "assistant" and self.content is None:
            if not self.tool_calls and not self.reasoning:
                raise ValueError("assistant message without content requires tool_calls or reasoning")
        return self

    @property
    def is_grouped(self) -> bool:
        return self.group_id is not None and self.message_index is not None

    def to_payload(self) -> Dict[str, Any]:
        """转换为出站请求中的消息字典 (不含时间戳与分组信息)"""
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            payload["name"] = self.name
        if self.role == "assistant" and self.tool_calls:
            payload["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        if self.role == "tool":
            payload["tool_call_id"] = self.tool_call_id
        return payload


class ChatHistory(BaseModel):
    """
    对话历史记录容器 (用于序列化导入/导出)
    """
    messages: List[Message] = Field(default_factory=list, description="有序的消息列表")
