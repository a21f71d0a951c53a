import sys
import os

"""
Parley Environment Utility
提供运行模式与环境变量的类型化读取工具。
"""

# -----------------------------------------------------------------------------
# 1. 运行模式 (Execution Mode)
# -----------------------------------------------------------------------------

# 物理状态：是否被 PyInstaller/Nuitka 打包
IS_FROZEN = getattr(sys, "frozen", False)

# 逻辑状态：通过环境变量强制覆盖 (PARLEY_ENV=production|development)
_ENV_VAR = os.getenv("PARLEY_ENV", "").lower()

IS_PRODUCTION = IS_FROZEN or (_ENV_VAR == "production")

# 调试模式：开启 DEBUG 级别的控制台日志
IS_DEBUG = (
    os.getenv("PARLEY_DEBUG", "false").lower() in ("true", "1", "yes") or
    os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
)

# -----------------------------------------------------------------------------
# 2. 获取器工具 (Typed Getters)
# -----------------------------------------------------------------------------

def get_bool(key: str, default: bool = False) -> bool:
    """安全的从环境变量获取布尔值 (支持 yes/true/1 等变体)"""
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes", "on", "enable")

def coerce_env_value(raw: str):
    """
    将环境变量字符串做简单的类型推断
    'true'/'false' -> bool, 纯数字 -> int, 浮点 -> float, 其余保持字符串
    """
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if raw.isdigit():
        return int(raw)
    try:
        return float(raw)
    except ValueError:
        return raw
