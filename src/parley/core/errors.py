from typing import Optional


class ParleyError(Exception):
    """投递核心的异常基类"""


class ConfigurationError(ParleyError, ValueError):
    """配置值非法 (范围错误、缺少必填项等)"""


class TransportError(ParleyError):
    """
    传输层错误：帧格式损坏或连接中断
    已累积的部分内容仍会被定稿并写入历史，错误本身上报给调用方
    """
    def __init__(self, message: str, frame: Optional[str] = None):
        super().__init__(message)
        self.frame = frame


class MessageValidationError(ParleyError, ValueError):
    """历史记录的同步操作收到非法消息，操作被拒绝且存储保持不变"""


class CollaboratorError(ParleyError):
    """
    外部协作者失败 (图片生成 / 追问请求)
    通过事件通道上报，不会中断正在进行的投递序列
    """
    def __init__(self, collaborator: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
        self.cause = cause
