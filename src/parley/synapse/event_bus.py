import asyncio
from enum import Enum
from typing import Callable, Any, Dict, List, Union
from collections import defaultdict
from parley.utils.async_ops import maybe_await
from parley.utils.logger import logger
from parley.schemas.protocol.events.base import BaseEvent

EventName = Union[str, Enum]

def _route_key(event_name: EventName) -> str:
    return event_name.value if isinstance(event_name, Enum) else event_name

class EventBus:
    """
    事件总线，负责把投递核心的通知分发给订阅者

    - 事件一律是 BaseEvent (Pydantic Model) 及其子类
    - 订阅回调可以是普通函数，也可以是协程函数
    - 单个订阅者抛出的异常只记录日志，不影响其他订阅者和发布方
    """
    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = defaultdict(list)
        # 接收者映射: id(ReceiverObj) -> List[(EventName, Callback)]
        # 用 id 作键，接收者不必可哈希 (list、pydantic 模型等)；绑定方法持有接收者，订阅期间 id 不会复用
        self._receivers: Dict[int, List[tuple]] = defaultdict(list)
        logger.debug("事件总线 (EventBus) 初始化完毕。")

    def subscribe(self, event_name: EventName, callback: Callable):
        """
        订阅特定类型的事件 (可直接传入 DeliveryEventKind)
        return: unsubscribe callback (一个用于取消订阅的函数)
        """
        key = _route_key(event_name)
        self._subscribers[key].append(callback)

        # 自动识别并记录接收者 (如果是绑定方法)
        receiver = getattr(callback, "__self__", None)
        if receiver is not None:
            self._receivers[id(receiver)].append((key, callback))

        logger.debug(f"[EventBus] 订阅: 事件={key}, 接收者={getattr(callback, '__qualname__', repr(callback))}")

        def unsubscribe():
            self.unsubscribe(key, callback)
        return unsubscribe

    def unsubscribe_receiver(self, receiver: Any):
        """
        断开某一对象的所有订阅
        不需要手动保存 unsubscribe handle，只要传入对象本身即可一键断开。
        """
        receiver_key = id(receiver)
        if receiver_key in self._receivers:
            logger.debug(f"[EventBus] 正在断开 {receiver.__class__.__name__} 的所有订阅...")
            # 复制列表进行迭代，因为 unsubscribe 会修改 _receivers
            for event_name, cb in list(self._receivers[receiver_key]):
                self.unsubscribe(event_name, cb)
            self._receivers.pop(receiver_key, None)

    def unsubscribe(self, event_name: EventName, callback: Callable):
        """断开特定的一个订阅"""
        key = _route_key(event_name)
        # 1. 从订阅表移除
        if key in self._subscribers:
            try:
                self._subscribers[key].remove(callback)
                if not self._subscribers[key]:
                    del self._subscribers[key]
            except ValueError:
                pass

        # 2. 从接收者映射表移除 (保持一致性)
        receiver = getattr(callback, "__self__", None)
        if receiver is not None and id(receiver) in self._receivers:
            receiver_key = id(receiver)
            try:
                self._receivers[receiver_key].remove((key, callback))
                if not self._receivers[receiver_key]:
                    del self._receivers[receiver_key]
            except ValueError:
                pass

    def subscriber_count(self, event_name: EventName) -> int:
        return len(self._subscribers.get(_route_key(event_name), []))

    async def publish(self, event: BaseEvent):
        """发布事件 (Strict Protocol)"""
        if not isinstance(event, BaseEvent):
            raise TypeError(f"EventBus only accepts BaseEvent, got {type(event).__name__}")

        event_name = event.name
        callbacks = list(self._subscribers.get(event_name, []))
        if not callbacks:
            return

        logger.debug(f"[EventBus] 分发: {event_name} (from: {event.source}) -> {len(callbacks)} 个订阅者")
        results = await asyncio.gather(
            *(self._invoke(cb, event) for cb in callbacks),
            return_exceptions=True
        )
        for cb, result in zip(callbacks, results):
            if isinstance(result, Exception):
                logger.opt(exception=result).error(
                    f"[EventBus] 订阅者 {getattr(cb, '__qualname__', repr(cb))} 处理 {event_name} 失败: {result}"
                )

    async def _invoke(self, callback: Callable, event: BaseEvent):
        return await maybe_await(callback(event))
