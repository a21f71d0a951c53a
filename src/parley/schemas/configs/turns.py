from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class AutoTurnConfig(BaseModel):
    """
    多轮拆分投递配置 (Auto Turn)

    控制一条完整回复是否被拆成若干条消息，以及模拟打字的节奏。
    所有时间单位均为秒。
    """
    enabled: bool = Field(default=False, description="是否启用拆分投递")
    split_probability: float = Field(
        default=1.0,
        ge=0.0, le=1.0,
        description="不含换行的回复被拆分的概率 (含换行时总是拆分)"
    )
    base_typing_speed: float = Field(
        default=38.0,
        gt=0.0,
        description="基础打字速度 (词/分钟)"
    )
    speed_variation: float = Field(
        default=0.2,
        ge=0.0, le=1.0,
        description="打字速度的随机浮动比例"
    )
    min_delay: float = Field(default=1.0, ge=0.0, description="两个轮次之间的最短延迟")
    max_delay: float = Field(default=4.0, ge=0.0, description="两个轮次之间的最长延迟")
    max_turns: int = Field(default=3, ge=1, description="单个分组最多投递的轮次数")
    follow_up_delay: float = Field(default=2.0, ge=0.0, description="触发追问请求前的等待时间")
    max_sequential_follow_ups: int = Field(
        default=2,
        ge=0,
        description="用户两次发言之间最多连续追问的次数"
    )

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "AutoTurnConfig":
        if self.min_delay > self.max_delay:
            raise ValueError(f"min_delay ({self.min_delay}) must not exceed max_delay ({self.max_delay})")
        return self


class ChatConfig(BaseModel):
    """
    请求参数配置 (模型参数 + 系统提示词)
    api_key 建议放在 configs/secrets.yaml 或环境变量中
    """
    api_key: str = Field(default="", description="API 密钥")
    base_url: str = Field(default="https://api.openai.com/v1", description="API 端点")
    model: str = Field(default="gpt-4o-mini", description="模型名称")
    system_prompt: str = Field(
        default="You are a friendly conversational companion.",
        description="系统提示词 (不进入历史记录)"
    )

    temperature: Optional[float] = Field(default=0.7, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=1024, ge=1)
    stop: Optional[List[str]] = None
    stream: bool = True

    compliance: bool = Field(default=True, description="请求服务端做内容合规检查")
    auto_turn: bool = Field(default=False, description="请求服务端返回拆分好的 turns")
    reasoning: bool = Field(default=False, description="请求服务端返回推理内容")
    show_reasoning: bool = False
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Any] = None
