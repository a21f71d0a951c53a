import sys

from loguru import logger
from parley.utils.env import IS_DEBUG, get_bool
from parley.utils.path import get_log_path, normalize_path


# ---------------私有常量----------------
LOG_FILE_NAME = "parley.log"    # 日志文件名
LOG_ROTATION = "10 MB"          # 日志轮转大小
LOG_RETENTION = "1 week"        # 日志保留时间
LOG_COMPRESSION = "zip"         # 日志压缩格式
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

def setup_logger(level: str = None, file_enabled: bool = None, file_level: str = "DEBUG"):
    """
    配置 loguru 日志
    :param level: 控制台日志级别 (默认 INFO, PARLEY_DEBUG 开启时为 DEBUG)
    :param file_enabled: 是否同时写入 logs/parley.log (默认读取 PARLEY_LOG_FILE)
    """
    logger.remove()

    console_level = level or ("DEBUG" if IS_DEBUG else "INFO")
    if file_enabled is None:
        file_enabled = get_bool("PARLEY_LOG_FILE", False)

    # 1. 输出到控制台 (带颜色)
    logger.add(sys.stderr, format=LOG_FORMAT, level=console_level)

    # 2. 输出到文件 (可选)
    if file_enabled:
        logger.add(
            normalize_path(get_log_path(LOG_FILE_NAME)),
            rotation=LOG_ROTATION,
            retention=LOG_RETENTION,
            compression=LOG_COMPRESSION,
            level=file_level,
            encoding="utf-8"
        )

    return logger

# 初始化
setup_logger()

__all__ = ["logger", "setup_logger"]
