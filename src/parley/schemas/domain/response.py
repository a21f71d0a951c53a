from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr

from .chat import ToolCall
from parley.core.errors import TransportError


class WireFrame(BaseModel):
    """
    传输层帧 (Wire Frame)

    data 帧携带一个 JSON 编码 (或已解码) 的分片响应对象，
    terminator 帧表示流的正常结束。
    """
    event: Literal["data", "terminator"]
    payload: Optional[Union[str, Dict[str, Any]]] = None

    @classmethod
    def data(cls, payload: Union[str, Dict[str, Any]]) -> "WireFrame":
        return cls(event="data", payload=payload)

    @classmethod
    def terminator(cls) -> "WireFrame":
        return cls(event="terminator")


# ---------------------------------------------------------------------------
# 流式分片 (Streaming Chunk): 在聚合器边界做严格校验
# ---------------------------------------------------------------------------

class FunctionDelta(BaseModel):
    name: Optional[StrictStr] = None
    arguments: Optional[StrictStr] = None


class ToolCallDelta(BaseModel):
    index: StrictInt = Field(..., ge=0, description="工具调用槽位 (流式期间稳定)")
    id: Optional[StrictStr] = None
    type: Optional[Literal["function"]] = None
    function: Optional[FunctionDelta] = None


class ChunkDelta(BaseModel):
    role: Optional[StrictStr] = None
    content: Optional[StrictStr] = None
    reasoning: Optional[StrictStr] = None
    tool_calls: Optional[List[ToolCallDelta]] = None
    turns: Optional[List[StrictStr]] = Field(None, description="服务端 autoTurn 拆分好的轮次")
    next: Optional[StrictBool] = Field(None, description="服务端提示稍后还有追加内容")


class ChunkChoice(BaseModel):
    index: StrictInt = 0
    delta: ChunkDelta = Field(default_factory=ChunkDelta)
    finish_reason: Optional[StrictStr] = None


class ChatCompletionChunk(BaseModel):
    """单个流式分片；id/model/usage 等未建模字段会被忽略"""
    model_config = ConfigDict(extra="ignore")

    choices: List[ChunkChoice] = Field(default_factory=list)
    compliance_violations: Optional[List[StrictStr]] = None


# ---------------------------------------------------------------------------
# 非流式完整响应
# ---------------------------------------------------------------------------

class CompletionMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: Optional[StrictStr] = None
    reasoning: Optional[StrictStr] = None
    tool_calls: Optional[List[ToolCall]] = None
    image_prompt: Optional[StrictStr] = None
    turns: Optional[List[StrictStr]] = None
    next: Optional[StrictBool] = None


class CompletionChoice(BaseModel):
    index: StrictInt = 0
    message: CompletionMessage
    finish_reason: Optional[StrictStr] = None
    compliance_violations: Optional[List[StrictStr]] = None


class ChatCompletionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    choices: List[CompletionChoice] = Field(default_factory=list)
    compliance_violations: Optional[List[StrictStr]] = None


class FinalizedResponse(BaseModel):
    """
    定稿后的逻辑响应 (Finalized Response)

    由聚合器在收到终止帧 / 传输结束 / 出错时生成，交给投递引擎。
    error 不为空表示这是一个被中断的部分结果。
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: Optional[str] = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    compliance_violations: Optional[List[str]] = None
    turns: Optional[List[str]] = None
    has_next: Optional[bool] = None
    reasoning: Optional[str] = None
    image_prompt: Optional[str] = None
    finish_reason: Optional[str] = None
    error: Optional[TransportError] = Field(None, exclude=True)

    @property
    def is_partial(self) -> bool:
        return self.error is not None

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.tool_calls

    @classmethod
    def from_completion(cls, payload: Dict[str, Any]) -> "FinalizedResponse":
        """从非流式 chat-completion 响应体构造 (取第一个 choice)"""
        response = ChatCompletionResponse.model_validate(payload)
        if not response.choices:
            return cls(compliance_violations=response.compliance_violations)

        choice = response.choices[0]
        message = choice.message
        return cls(
            content=message.content,
            tool_calls=list(message.tool_calls or []),
            compliance_violations=response.compliance_violations or choice.compliance_violations,
            turns=message.turns,
            has_next=message.next,
            reasoning=message.reasoning,
            image_prompt=message.image_prompt,
            finish_reason=choice.finish_reason,
        )
