import asyncio
import inspect
import time
from typing import Any, Awaitable, Optional, Set
from parley.utils.logger import logger

# 后台任务的强引用集合，防止 Task 在完成前被 GC 回收
_background_tasks: Set[asyncio.Task] = set()

async def maybe_await(result: Any) -> Any:
    """
    统一同步/异步回调的返回值
    协作者回调既可以是普通函数也可以是协程函数
    """
    if inspect.isawaitable(result):
        return await result
    return result

def run_in_background(coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
    """
    Fire-and-forget: 在后台运行协程，不阻塞当前流程
    会自动捕获异常并记入日志，防止 Task 销毁时的警告
    """
    async def wrapper():
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Background task failed: {e}")

    task = asyncio.get_running_loop().create_task(wrapper(), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task

def has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
        return True
    except RuntimeError:
        return False

class Timer:
    """
    上下文管理器：用于测量代码块执行耗时
    with Timer("Transport complete"):
        completion = await client.chat.completions.create(...)
    """
    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start) * 1000
        logger.debug(f"[{self.name}] took {self.elapsed_ms:.2f}ms")
