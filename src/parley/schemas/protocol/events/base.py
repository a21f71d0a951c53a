from typing import Any
from pydantic import BaseModel, ConfigDict, Field
import time
import uuid

class BaseEvent(BaseModel):
    """
    事件基类 (Protocol)

    投递核心发出的所有通知 (轮次投递、取消、图片、流错误等) 都继承自此类。
    它定义了事件在 EventBus 中传输所需的最小公分母。
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="事件唯一标识符 (UUID)")
    timestamp: float = Field(default_factory=time.time, description="事件产生的时间戳 (Unix Timestamp)")
    source: str = Field(default="unknown", description="事件源 (发送者名称, 如 'Turns', 'Stream', 'History')")
    name: str = Field(..., description="事件路由键 (Routing Key), 用于 EventBus 订阅分发 (例如 'turns.delivered')")
    payload: Any = Field(default=None, description="事件携带的附加数据载荷")
