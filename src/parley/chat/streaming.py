import json
from typing import Any, AsyncIterable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from parley.core.errors import TransportError
from parley.schemas.domain.chat import FunctionCall, ToolCall
from parley.schemas.domain.response import ChatCompletionChunk, FinalizedResponse, WireFrame
from parley.schemas.protocol.events.delivery import MessageTokensEvent, StreamErrorEvent
from parley.synapse.event_bus import EventBus
from parley.utils.logger import logger
from parley.utils.string import truncate_text

FrameLike = Union[WireFrame, Dict[str, Any]]
FrameSource = Union[AsyncIterable[FrameLike], Iterable[FrameLike]]


class StreamAggregator:
    """
    流式响应聚合器 (Stream Response Aggregator)

    把一串分片帧还原为一个逻辑响应：文本增量拼接、工具调用按 index 合并、
    turns/next/合规结果等元数据取最后一次出现的值。
    一个实例只聚合一个响应。
    """
    def __init__(self, bus: Optional[EventBus] = None):
        self._bus = bus
        self.content: str = ""
        self.reasoning: str = ""
        self.tool_calls: List[ToolCall] = []
        self.turns: Optional[List[str]] = None
        self.has_next: Optional[bool] = None
        self.compliance_violations: Optional[List[str]] = None
        self.finish_reason: Optional[str] = None
        self.done: bool = False
        self.frames_seen: int = 0

    # -------------------------------------------------------------------------
    # 同步接口
    # -------------------------------------------------------------------------

    def feed(self, frame: FrameLike) -> Optional[ChatCompletionChunk]:
        """
        应用一帧
        终止帧返回 None；格式损坏的帧抛出 TransportError (已累积的状态不受影响)
        """
        if self.done:
            raise TransportError("frame received after terminator")

        frame = self._coerce_frame(frame)
        self.frames_seen += 1
        if frame.event == "terminator":
            self.done = True
            return None

        chunk = self._parse_chunk(frame.payload)
        if chunk.compliance_violations is not None:
            self.compliance_violations = list(chunk.compliance_violations)
        if not chunk.choices:
            return chunk

        choice = chunk.choices[0]
        delta = choice.delta
        if delta.content:
            self.content += delta.content
        if delta.reasoning:
            self.reasoning += delta.reasoning
        for call_delta in delta.tool_calls or []:
            self._merge_tool_call(call_delta)
        if delta.turns is not None:
            self.turns = list(delta.turns)
        if delta.next is not None:
            self.has_next = delta.next
        if choice.finish_reason is not None:
            self.finish_reason = choice.finish_reason
        return chunk

    def finalize(self, error: Optional[TransportError] = None) -> FinalizedResponse:
        content: Optional[str] = self.content
        if self.finish_reason == "tool_calls" and content == "":
            content = None
        return FinalizedResponse(
            content=content,
            tool_calls=[call.model_copy(deep=True) for call in self.tool_calls],
            compliance_violations=self.compliance_violations,
            turns=self.turns,
            has_next=self.has_next,
            reasoning=self.reasoning or None,
            finish_reason=self.finish_reason,
            error=error,
        )

    # -------------------------------------------------------------------------
    # 异步接口
    # -------------------------------------------------------------------------

    async def aggregate(self, frames: FrameSource) -> FinalizedResponse:
        """
        消费整个帧序列并定稿
        传输异常或损坏帧不会向上抛出：已累积内容照常定稿，错误挂在 result.error 上
        """
        error: Optional[TransportError] = None
        try:
            if hasattr(frames, "__aiter__"):
                async for frame in frames:
                    if await self._consume(frame):
                        break
            else:
                for frame in frames:
                    if await self._consume(frame):
                        break
        except TransportError as e:
            error = e
        except Exception as e:
            error = TransportError(f"transport failed: {e}")
            error.__cause__ = e

        result = self.finalize(error)
        if error is not None:
            logger.error(f"[Stream] 流在 {self.frames_seen} 帧后中断: {error}")
            await self._emit(StreamErrorEvent(error=error, partial_content=result.content))
        else:
            logger.debug(
                f"[Stream] 聚合完成: {len(self.content)} 字符, {len(self.tool_calls)} 个工具调用, "
                f"turns={len(self.turns) if self.turns else 0}, next={self.has_next}"
            )
        return result

    async def _consume(self, frame: FrameLike) -> bool:
        """应用一帧，返回是否已到达终止帧"""
        chunk = self.feed(frame)
        if chunk is None:
            return True
        if chunk.choices and chunk.choices[0].delta.content:
            await self._emit(MessageTokensEvent(delta=chunk.choices[0].delta.content))
        return False

    async def _emit(self, event):
        if self._bus is not None:
            await self._bus.publish(event)

    # -------------------------------------------------------------------------
    # 内部逻辑
    # -------------------------------------------------------------------------

    def _coerce_frame(self, frame: FrameLike) -> WireFrame:
        if isinstance(frame, WireFrame):
            return frame
        try:
            return WireFrame.model_validate(frame)
        except ValidationError as e:
            raise TransportError(f"malformed wire frame: {e}", frame=truncate_text(repr(frame), 120)) from e

    def _parse_chunk(self, payload: Union[str, Dict[str, Any], None]) -> ChatCompletionChunk:
        if payload is None:
            raise TransportError("data frame without payload")
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise TransportError(f"malformed JSON in data frame: {e}", frame=truncate_text(payload, 120)) from e
        try:
            return ChatCompletionChunk.model_validate(payload)
        except ValidationError as e:
            raise TransportError(f"unexpected chunk shape: {e}", frame=truncate_text(repr(payload), 120)) from e

    def _merge_tool_call(self, call_delta):
        # 高 index 先到时用占位槽补齐；低 index 后到直接合并进已有槽位
        while len(self.tool_calls) <= call_delta.index:
            self.tool_calls.append(
                ToolCall(id=f"temp_id_{len(self.tool_calls)}", type="function", function=FunctionCall())
            )
        slot = self.tool_calls[call_delta.index]
        if call_delta.id:
            slot.id = call_delta.id
        if call_delta.type:
            slot.type = call_delta.type
        if call_delta.function is not None:
            if call_delta.function.name:
                slot.function.name = call_delta.function.name
            if call_delta.function.arguments:
                slot.function.arguments += call_delta.function.arguments
