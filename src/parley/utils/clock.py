import asyncio
import heapq
import itertools
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Tuple


class Clock(Protocol):
    """
    时间源协议
    投递引擎的所有等待都经由 Clock，测试中可替换为虚拟时钟
    """
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """真实时钟：UTC 当前时间 + asyncio.sleep"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class VirtualClock:
    """
    虚拟时钟 (测试用)

    sleep() 会把调用方挂起，直到 advance() 把时间推过其截止点。
    每唤醒一个等待者都会让出若干次事件循环，使被唤醒的协程跑到下一个挂起点。
    """
    SETTLE_ROUNDS = 50

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._sleepers: List[Tuple[datetime, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut = asyncio.get_running_loop().create_future()
        deadline = self._now + timedelta(seconds=seconds)
        heapq.heappush(self._sleepers, (deadline, next(self._seq), fut))
        await fut

    async def settle(self) -> None:
        """让出事件循环，直到已就绪的协程都跑到下一个挂起点"""
        for _ in range(self.SETTLE_ROUNDS):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """推进虚拟时间，按截止时间顺序唤醒等待者"""
        target = self._now + timedelta(seconds=seconds)
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not fut.done():
                fut.set_result(None)
            await self.settle()
        self._now = target
        await self.settle()

    async def run_until_idle(self, max_seconds: float = 3600.0) -> None:
        """一直推进时间直到没有等待者 (或超过上限)"""
        await self.settle()
        elapsed = 0.0
        while self._sleepers and elapsed < max_seconds:
            deadline = self._sleepers[0][0]
            step = max(0.0, (deadline - self._now).total_seconds())
            await self.advance(step)
            elapsed += step
