"""
异常模型模块

异常层级:
    ProxyManagerError (基类)
    ├── ConfigurationError (配置错误 - 启动时致命)
    ├── BindError (本地监听失败 - 启动时致命)
    ├── AcceptTransientError (单次 accept 失败 - 记录日志后继续)
    ├── RemoteUnreachableError (远端 3 次连接均失败 - 仅影响当前连接)
    ├── DialCancelledError (连接过程中被取消)
    └── RelayIOError (转发过程中某一方向出错 - 仅影响当前连接)
"""

from typing import Optional


class ProxyManagerError(Exception):
    """
    基础异常类

    Attributes:
        message: 错误消息
        cause: 原始异常（如有）
    """

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.cause is not None:
            return f"{base}: {self.cause}"
        return base


class ConfigurationError(ProxyManagerError):
    """配置无效、缺失或无法读取"""


class BindError(ProxyManagerError):
    """本地地址监听失败（端口占用、权限不足等）"""

    def __init__(self, message: str = "", *, host: str = "", port: int = 0,
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.host = host
        self.port = port


class AcceptTransientError(ProxyManagerError):
    """单次 accept 失败，且监听未被取消"""


class RemoteUnreachableError(ProxyManagerError):
    """
    远端不可达

    所有连接尝试都失败，cause 为最后一次的底层错误。
    """

    def __init__(self, message: str = "", *, address: str = "", attempts: int = 0,
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.address = address
        self.attempts = attempts


class DialCancelledError(ProxyManagerError):
    """连接远端的过程被取消（通常是进程正在关闭）"""


class RelayIOError(ProxyManagerError):
    """转发过程中某一方向的读写错误"""

    def __init__(self, message: str = "", *, direction: str = "",
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.direction = direction


__all__ = [
    "ProxyManagerError",
    "ConfigurationError",
    "BindError",
    "AcceptTransientError",
    "RemoteUnreachableError",
    "DialCancelledError",
    "RelayIOError",
]
