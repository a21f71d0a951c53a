from .system import (
    AppConfig,
    LoggingConfig,
    HistoryConfig,
    ParleySettings,
    coerce_config
)
from .turns import AutoTurnConfig, ChatConfig

__all__ = [
    "AppConfig",
    "LoggingConfig",
    "HistoryConfig",
    "ParleySettings",
    "coerce_config",
    "AutoTurnConfig",
    "ChatConfig"
]
