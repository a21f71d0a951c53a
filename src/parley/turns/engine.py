import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field

from parley.core.errors import CollaboratorError
from parley.schemas.configs.system import coerce_config
from parley.schemas.configs.turns import AutoTurnConfig
from parley.schemas.domain.chat import GroupMetadata, ToolCall
from parley.schemas.protocol.events.base import BaseEvent
from parley.schemas.protocol.events.delivery import (
    FollowUpErrorEvent, GroupCompleteEvent, ImageCompleteEvent, ImageErrorEvent,
    ImageStartEvent, TurnDeliveredEvent, TurnsCanceledEvent
)
from parley.synapse.event_bus import EventBus
from parley.turns.pacing import TurnPacer
from parley.utils.async_ops import has_running_loop, maybe_await, run_in_background
from parley.utils.clock import Clock, SystemClock
from parley.utils.logger import logger
from parley.utils.string import truncate_text

# deliver(content, compliance_violations, tool_calls, group_metadata, reasoning)
DeliverFn = Callable[..., Union[None, Awaitable[None]]]
ImageFn = Callable[[str], Awaitable[str]]
FollowUpFn = Callable[[], Union[None, Awaitable[None]]]


def image_markup(prompt: str, url: str) -> str:
    """图片轮次在历史中的文本表示"""
    return f"<image description='{prompt}' src='{url}' />"


class QueuedTurn(BaseModel):
    """一个等待投递的轮次 (文本或图片)"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: Literal["text", "image"] = "text"
    content: str
    offset: float = Field(..., ge=0.0, description="相对分组调度时刻的累计延迟 (秒)")
    epoch: int
    meta: GroupMetadata
    image_prompt: Optional[str] = None
    compliance_violations: Optional[List[str]] = None
    tool_calls: Optional[List[ToolCall]] = None
    has_next: Optional[bool] = None
    reasoning: Optional[str] = None


class TurnDeliveryEngine:
    """
    多轮投递引擎 (Turn Delivery Engine)

    把一个已定稿的回复拆成若干轮，按模拟的打字节奏依次投递。
    取消是基于 epoch 的：cancel_pending_messages() 让 epoch 自增，
    之后醒来的旧计时器发现 epoch 不一致就静默丢弃；已经开始投递的轮次总会执行完。
    """
    def __init__(
        self,
        config: Union[AutoTurnConfig, Dict[str, Any], None],
        deliver: DeliverFn,
        generate_image: Optional[ImageFn] = None,
        on_follow_up: Optional[FollowUpFn] = None,
        clock: Optional[Clock] = None,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config: AutoTurnConfig = coerce_config(AutoTurnConfig, config)
        self._deliver = deliver
        self._generate_image = generate_image
        self._on_follow_up = on_follow_up
        self._clock = clock or SystemClock()
        self._bus = bus
        self._rng = rng or random.Random()
        self.pacer = TurnPacer(self.config, self._rng)

        self._epoch = 0
        self._group_seq = 0
        self._queue: List[QueuedTurn] = []
        self._pending_follow_up = False
        self._tasks: Set[asyncio.Task] = set()
        self._delivered_count = 0
        self._group_delivered: Dict[str, int] = {}
        self._current_group_id: Optional[str] = None

    # -------------------------------------------------------------------------
    # 状态查询
    # -------------------------------------------------------------------------

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def pending_follow_up(self) -> bool:
        return self._pending_follow_up

    @property
    def current_group_id(self) -> Optional[str]:
        return self._current_group_id

    @property
    def is_active(self) -> bool:
        return bool(self._queue) or any(not task.done() for task in self._tasks)

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "queue_length": len(self._queue),
            "epoch": self._epoch,
            "delivered_count": self._delivered_count,
            "is_active": self.is_active,
            "current_group_id": self._current_group_id,
        }

    # -------------------------------------------------------------------------
    # 公共 API
    # -------------------------------------------------------------------------

    def process_response(
        self,
        content: Optional[str],
        compliance_violations: Optional[List[str]] = None,
        tool_calls: Optional[List[ToolCall]] = None,
        server_turns: Optional[List[str]] = None,
        image_prompt: Optional[str] = None,
        has_next: Optional[bool] = None,
        reasoning: Optional[str] = None,
    ) -> bool:
        """
        尝试把回复拆分投递
        返回 False 表示调用方应按普通的单条消息处理
        必须在事件循环中调用 (计时器是 asyncio Task)
        """
        if not self.config.enabled or not content:
            return False
        if not server_turns or len(server_turns) <= 1:
            return False

        # 含换行的回复总是拆分，否则按概率
        if "\n" not in content and self._rng.random() >= self.config.split_probability:
            logger.debug("[Turns] 本次回复按概率不拆分")
            return False

        turns = self.pacer.limit_turns(server_turns, bool(has_next))
        if len(turns) <= 1:
            return False

        loop = asyncio.get_running_loop()
        group_id = f"group_{self._epoch}_{self._group_seq}"
        self._group_seq += 1
        group_timestamp = self._clock.now()
        total = len(turns) + (1 if image_prompt else 0)

        entries: List[QueuedTurn] = []
        offset = 0.0
        for index, text in enumerate(turns):
            if index > 0:
                offset += self.pacer.delay_for(text)
            is_last_text = index == len(turns) - 1
            entries.append(QueuedTurn(
                content=text,
                offset=offset,
                epoch=self._epoch,
                meta=GroupMetadata(
                    group_id=group_id,
                    message_index=index,
                    total_in_group=total,
                    group_timestamp=group_timestamp,
                ),
                compliance_violations=compliance_violations if is_last_text else None,
                tool_calls=tool_calls if is_last_text else None,
                has_next=has_next if (is_last_text and not image_prompt) else None,
                reasoning=reasoning if index == 0 else None,
            ))

        if image_prompt:
            offset += self.pacer.delay_for("")
            entries.append(QueuedTurn(
                kind="image",
                content="",
                offset=offset,
                epoch=self._epoch,
                meta=GroupMetadata(
                    group_id=group_id,
                    message_index=len(turns),
                    total_in_group=total,
                    group_timestamp=group_timestamp,
                ),
                image_prompt=image_prompt,
                has_next=has_next,
            ))

        self._queue.extend(entries)
        self._current_group_id = group_id
        task = loop.create_task(self._run_group(group_id, entries), name=f"turns-{group_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

        logger.info(
            f"[Turns] 回复拆分为 {len(turns)} 轮{' + 图片' if image_prompt else ''} "
            f"(group={group_id}, 总时长≈{offset:.1f}s, next={bool(has_next)})"
        )
        return True

    def cancel_pending_messages(self) -> int:
        """
        作废所有尚未投递的轮次 (用户发送新消息时调用)
        返回被丢弃的数量
        """
        count = len(self._queue)
        self._epoch += 1
        self._queue.clear()
        self._pending_follow_up = False

        if count:
            logger.info(f"[Turns] 已取消 {count} 个待投递轮次 (epoch -> {self._epoch})")
            if has_running_loop():
                run_in_background(
                    self._emit(TurnsCanceledEvent(count=count, epoch=self._epoch)),
                    name="turns-canceled"
                )
        return count

    def update_config(self, config: Union[AutoTurnConfig, Dict[str, Any]]):
        """替换配置；非法配置抛出 ConfigurationError 且不做任何改动"""
        new_config = coerce_config(AutoTurnConfig, config)
        self.cancel_pending_messages()
        self.config = new_config
        self.pacer.config = new_config

    async def drain(self):
        """等待所有计时器任务结束"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self):
        """关闭引擎：作废待投递轮次并取消所有计时器任务"""
        self.cancel_pending_messages()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("[Turns] 投递引擎已关闭")

    # -------------------------------------------------------------------------
    # 计时与投递
    # -------------------------------------------------------------------------

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error(f"[Turns] 投递任务异常退出: {task.get_name()}")

    async def _run_group(self, group_id: str, entries: List[QueuedTurn]):
        # 同组轮次的累计延迟严格递增，按顺序睡到各自的时刻即可
        start = self._clock.now()
        try:
            for entry in entries:
                elapsed = (self._clock.now() - start).total_seconds()
                await self._clock.sleep(max(0.0, entry.offset - elapsed))

                if entry.epoch != self._epoch:
                    logger.debug(f"[Turns] 丢弃过期轮次 {group_id}#{entry.meta.message_index}")
                    return
                await self._fire(entry)
        finally:
            # 异常退出或被取消时清理本组残留
            self._queue = [e for e in self._queue if e.meta.group_id != group_id]
            self._group_delivered.pop(group_id, None)

    async def _fire(self, entry: QueuedTurn):
        self._queue = [e for e in self._queue if e is not entry]
        meta = entry.meta.model_copy(update={"processed_timestamp": self._clock.now()})

        if entry.kind == "image":
            await self.deliver_image(entry.image_prompt or "", meta)
        else:
            await maybe_await(self._deliver(
                entry.content,
                entry.compliance_violations,
                entry.tool_calls,
                meta,
                entry.reasoning,
            ))
            self._delivered_count += 1
            self._group_delivered[meta.group_id] = self._group_delivered.get(meta.group_id, 0) + 1
            logger.debug(
                f"[Turns] 投递 {meta.group_id} [{meta.message_index + 1}/{meta.total_in_group}]: "
                f"{truncate_text(entry.content, 40)}"
            )
            await self._emit(TurnDeliveredEvent(
                group_id=meta.group_id,
                message_index=meta.message_index,
                total_in_group=meta.total_in_group,
                content=entry.content,
            ))

        # 投递或发布事件期间可能已被取消，旧 epoch 的回复不再追问
        stale = entry.epoch != self._epoch
        if stale and entry.has_next:
            logger.debug(f"[Turns] {meta.group_id} 已被取消，跳过追问")

        group_drained = not any(e.meta.group_id == meta.group_id for e in self._queue)
        if entry.has_next and not stale:
            if group_drained:
                await self._trigger_follow_up()
            else:
                # has_next 只挂在本组最后一条上，正常情况下此时组已排空；
                # 挂起分支保证即便组内仍有残留条目，追问也要等整组投递完才触发
                self._pending_follow_up = True

        if group_drained:
            delivered = self._group_delivered.pop(meta.group_id, 0)
            await self._emit(GroupCompleteEvent(group_id=meta.group_id, delivered=delivered))
            if self._pending_follow_up and not stale:
                self._pending_follow_up = False
                await self._trigger_follow_up()

    async def deliver_image(self, prompt: str, meta: Optional[GroupMetadata] = None) -> bool:
        """
        生成图片并以一条助手消息投递；失败时发布 IMAGE_ERROR 并返回 False
        meta 为空时 (未拆分的回复) 图片消息不属于任何分组
        """
        group_id = meta.group_id if meta is not None else None
        await self._emit(ImageStartEvent(prompt=prompt, group_id=group_id))

        if self._generate_image is None:
            error = CollaboratorError("image", "no image generator configured")
            logger.warning(f"[Turns] 跳过图片轮次: {error}")
            await self._emit(ImageErrorEvent(prompt=prompt, error=error, group_id=group_id))
            return False

        try:
            url = await maybe_await(self._generate_image(prompt))
        except Exception as e:
            error = CollaboratorError("image", str(e), cause=e)
            logger.error(f"[Turns] 图片生成失败: {e}")
            await self._emit(ImageErrorEvent(prompt=prompt, error=error, group_id=group_id))
            return False

        await maybe_await(self._deliver(image_markup(prompt, url), None, None, meta, None))
        self._delivered_count += 1
        if group_id is not None:
            self._group_delivered[group_id] = self._group_delivered.get(group_id, 0) + 1
        await self._emit(ImageCompleteEvent(prompt=prompt, url=url, group_id=group_id))
        return True

    async def _trigger_follow_up(self):
        if self._on_follow_up is None:
            logger.debug("[Turns] 未配置追问回调，忽略 next 标记")
            return
        try:
            await maybe_await(self._on_follow_up())
        except Exception as e:
            logger.error(f"[Turns] 追问请求失败: {e}")
            await self._emit(FollowUpErrorEvent(error=CollaboratorError("follow_up", str(e), cause=e)))

    async def _emit(self, event: BaseEvent):
        if self._bus is not None:
            await self._bus.publish(event)
