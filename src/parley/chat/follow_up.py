import asyncio
from typing import Any, Awaitable, Callable, Optional, Union

from parley.core.errors import CollaboratorError
from parley.schemas.configs.turns import AutoTurnConfig
from parley.schemas.protocol.events.delivery import FollowUpErrorEvent
from parley.synapse.event_bus import EventBus
from parley.utils.async_ops import maybe_await, run_in_background
from parley.utils.clock import Clock, SystemClock
from parley.utils.logger import logger

TriggerFn = Callable[[], Union[Any, Awaitable[Any]]]


class FollowUpController:
    """
    追问控制器

    服务端在回复中带 next=true 时，等待 follow_up_delay 秒后自动发起一次追问请求。
    - 用户两次发言之间最多连续追问 max_sequential_follow_ups 次
    - 同一时刻最多只有一个等待中的追问
    - cancel() 通过 epoch 作废等待中的追问
    """
    def __init__(
        self,
        trigger: TriggerFn,
        config: AutoTurnConfig,
        clock: Optional[Clock] = None,
        bus: Optional[EventBus] = None,
    ):
        self._trigger = trigger
        self.config = config
        self._clock = clock or SystemClock()
        self._bus = bus
        self._count = 0
        self._pending = False
        self._epoch = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def count(self) -> int:
        return self._count

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def epoch(self) -> int:
        return self._epoch

    def request(self) -> bool:
        """
        申请一次追问，返回是否已安排
        """
        if self._count >= self.config.max_sequential_follow_ups:
            logger.info(f"[FollowUp] 已达到连续追问上限 ({self.config.max_sequential_follow_ups})，忽略")
            return False
        if self._pending:
            logger.debug("[FollowUp] 已有等待中的追问，忽略")
            return False

        self._pending = True
        self._count += 1
        epoch = self._epoch
        self._task = run_in_background(self._run(epoch), name=f"follow-up-{epoch}-{self._count}")
        logger.debug(f"[FollowUp] {self.config.follow_up_delay:.1f}s 后发起第 {self._count} 次追问")
        return True

    def reset(self):
        """用户发送新消息时清零连续追问计数"""
        self._count = 0

    def cancel(self):
        """作废等待中的追问 (已经发出的请求不受影响)"""
        if self._pending:
            logger.debug("[FollowUp] 等待中的追问已取消")
        self._epoch += 1
        self._pending = False

    async def aclose(self):
        self.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self, epoch: int):
        await self._clock.sleep(self.config.follow_up_delay)
        if epoch != self._epoch:
            return
        self._pending = False

        try:
            await maybe_await(self._trigger())
        except Exception as e:
            logger.error(f"[FollowUp] 追问请求失败: {e}")
            if self._bus is not None:
                await self._bus.publish(FollowUpErrorEvent(error=CollaboratorError("follow_up", str(e), cause=e)))
