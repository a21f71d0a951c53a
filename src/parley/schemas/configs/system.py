from pydantic import BaseModel, Field, ValidationError

from parley.core.errors import ConfigurationError

from .turns import AutoTurnConfig, ChatConfig

class AppConfig(BaseModel):
    """
    应用全局配置模型
    """
    app_name: str = "parley"
    version: str = "0.1.0"
    debug: bool = False

class LoggingConfig(BaseModel):
    """日志输出配置 (loguru)"""
    level: str = Field(default="INFO", description="控制台日志级别")
    file_enabled: bool = Field(default=False, description="是否同时写入 logs/parley.log")
    file_level: str = Field(default="DEBUG", description="文件日志级别")

class HistoryConfig(BaseModel):
    """对话历史配置"""
    history_size: int = Field(
        default=50,
        ge=0,
        description="保留的最大消息条数 (0 = 不保留历史)"
    )

class ParleySettings(BaseModel):
    """
    配置根节点
    对应 configs/settings.yaml (+ configs/secrets.yaml 覆盖)
    """
    app: AppConfig = Field(default_factory=AppConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    auto_turn: AutoTurnConfig = Field(default_factory=AutoTurnConfig)


def coerce_config(model_cls, value):
    """
    把 dict / None / 模型实例统一转换为指定的配置模型
    校验失败时抛出 ConfigurationError
    """
    if isinstance(value, model_cls):
        return value
    try:
        return model_cls.model_validate(value or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {model_cls.__name__}: {e}") from e
