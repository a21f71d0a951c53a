import random
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from parley.chat.follow_up import FollowUpController
from parley.chat.history import HistoryStore
from parley.chat.request_builder import ChatRequestBuilder
from parley.chat.streaming import FrameSource, StreamAggregator
from parley.schemas.configs.system import ParleySettings
from parley.schemas.domain.chat import Message
from parley.schemas.domain.response import FinalizedResponse
from parley.schemas.protocol.events.delivery import MessageCompleteEvent
from parley.synapse.event_bus import EventBus
from parley.turns.engine import TurnDeliveryEngine
from parley.utils.async_ops import maybe_await, run_in_background
from parley.utils.clock import Clock, SystemClock
from parley.utils.logger import logger
from parley.utils.string import truncate_text

ImageFn = Callable[[str], Awaitable[str]]


class ChatTransport(Protocol):
    """对话所需的最小传输能力 (OpenAIStreamTransport 满足此协议)"""
    def stream(self, payload: Dict[str, Any]) -> FrameSource: ...

    async def complete(self, payload: Dict[str, Any]) -> Union[FinalizedResponse, Dict[str, Any]]: ...


class Conversation:
    """
    对话门面 (Conversation Facade)

    持有一套 历史记录 / 投递引擎 / 追问控制器 / 请求构建器 / 事件总线，
    把 "发送用户消息 -> 接收回复 -> 拆分投递 -> 写入历史 -> 自动追问" 串起来。
    """
    def __init__(
        self,
        settings: Optional[ParleySettings] = None,
        transport: Optional[ChatTransport] = None,
        generate_image: Optional[ImageFn] = None,
        clock: Optional[Clock] = None,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or ParleySettings()
        self.clock = clock or SystemClock()
        self.bus = bus or EventBus()
        self.transport = transport

        self.history = HistoryStore(self.settings.history.history_size, clock=self.clock)
        self.builder = ChatRequestBuilder(self.settings.chat, self.history)
        self.follow_up = FollowUpController(
            self._run_follow_up, self.settings.auto_turn, clock=self.clock, bus=self.bus
        )
        self.engine = TurnDeliveryEngine(
            self.settings.auto_turn,
            deliver=self.history.add_assistant_response,
            generate_image=generate_image,
            on_follow_up=self.follow_up.request,
            clock=self.clock,
            bus=self.bus,
            rng=rng,
        )

    @classmethod
    def from_config(cls, manager=None, **kwargs) -> "Conversation":
        """从配置管理器构建，并在配置热重载时同步更新"""
        if manager is None:
            from parley.core.config_manager import global_config
            manager = global_config
        manager.apply_logging()
        conversation = cls(manager.get(), **kwargs)
        manager.add_observer(lambda: conversation.apply_settings(manager.get()))
        return conversation

    def apply_settings(self, settings: ParleySettings):
        """应用新配置 (待投递轮次会被取消)"""
        self.engine.update_config(settings.auto_turn)
        self.follow_up.config = settings.auto_turn
        self.builder.update_config(settings.chat)
        self.history.resize(settings.history.history_size)
        self.settings = settings
        logger.info("[Conversation] 配置已更新")

    # -------------------------------------------------------------------------
    # 发送
    # -------------------------------------------------------------------------

    def send(self, text: str, name: Optional[str] = None) -> Dict[str, Any]:
        """
        记录一条用户消息并返回出站请求体
        用户开口即打断：待投递的轮次与等待中的追问都会被取消
        """
        canceled = self.engine.cancel_pending_messages()
        self.follow_up.cancel()
        self.follow_up.reset()
        if canceled:
            logger.debug(f"[Conversation] 用户插话，丢弃 {canceled} 个未投递轮次")

        message = Message(role="user", content=text, name=name, timestamp=self.clock.now())
        payload = self.builder.build_request([message])
        self.history.insert(message)
        logger.info(f"[Conversation] 用户: {truncate_text(text)}")
        return payload

    async def ask(self, text: str, name: Optional[str] = None) -> FinalizedResponse:
        """send() + 通过传输层取回回复并处理"""
        if self.transport is None:
            raise RuntimeError("Conversation.ask() requires a transport")
        payload = self.send(text, name=name)
        if payload.get("stream"):
            return await self.receive_stream(self.transport.stream(payload))
        result = await self.transport.complete(payload)
        return await self._receive_result(result)

    # -------------------------------------------------------------------------
    # 接收
    # -------------------------------------------------------------------------

    async def receive_stream(self, frames: FrameSource) -> FinalizedResponse:
        """聚合流式帧并处理定稿后的回复 (中断的部分结果同样入库)"""
        result = await StreamAggregator(bus=self.bus).aggregate(frames)
        await self.receive(result)
        return result

    async def receive(self, result: Union[FinalizedResponse, Dict[str, Any]]) -> bool:
        """
        处理一个完整回复
        返回 True 表示回复已交给投递引擎拆分投递
        """
        if isinstance(result, dict):
            result = FinalizedResponse.from_completion(result)

        processed = False
        if result.error is None:
            processed = self.engine.process_response(
                result.content,
                compliance_violations=result.compliance_violations,
                tool_calls=result.tool_calls or None,
                server_turns=result.turns,
                image_prompt=result.image_prompt,
                has_next=result.has_next,
                reasoning=result.reasoning,
            )
        if processed:
            return True

        self.history.add_assistant_response(
            result.content,
            result.compliance_violations,
            result.tool_calls or None,
            None,
            result.reasoning,
        )
        if result.content is not None or result.tool_calls or result.reasoning:
            await self.bus.publish(MessageCompleteEvent(
                message=Message(
                    role="assistant",
                    content=result.content,
                    reasoning=result.reasoning,
                    tool_calls=result.tool_calls or None,
                    timestamp=self.clock.now(),
                ),
                compliance_violations=result.compliance_violations,
            ))

        if result.error is not None:
            return False
        if result.image_prompt:
            run_in_background(
                self._image_then_follow_up(result.image_prompt, bool(result.has_next)),
                name="conversation-image"
            )
        elif result.has_next:
            self.follow_up.request()
        return False

    async def _receive_result(self, result: Union[FinalizedResponse, Dict[str, Any]]) -> FinalizedResponse:
        if isinstance(result, dict):
            result = FinalizedResponse.from_completion(result)
        await self.receive(result)
        return result

    async def _image_then_follow_up(self, prompt: str, has_next: bool):
        await self.engine.deliver_image(prompt)
        if has_next:
            self.follow_up.request()

    async def _run_follow_up(self):
        if self.transport is None:
            logger.warning("[Conversation] 未配置传输层，无法发起追问")
            return
        epoch = self.follow_up.epoch
        payload = self.builder.build_follow_up_request()
        result = await maybe_await(self.transport.complete(payload))
        if epoch != self.follow_up.epoch:
            logger.debug("[Conversation] 追问期间用户已发言，丢弃追问结果")
            return
        await self._receive_result(result)

    # -------------------------------------------------------------------------
    # 管理
    # -------------------------------------------------------------------------

    def clear_history(self) -> int:
        self.engine.cancel_pending_messages()
        self.follow_up.cancel()
        return self.history.clear()

    async def aclose(self):
        await self.engine.aclose()
        await self.follow_up.aclose()
