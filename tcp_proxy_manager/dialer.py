"""
远端连接（带重试）

每次尝试有连接超时（解析出的多个地址共享同一截止时间）；两次尝试之间按线性退避等待（1s、2s），
最后一次失败后不再等待。
"""

import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional

from tcp_proxy_manager.cancellation import CancellationScope
from tcp_proxy_manager.errors import DialCancelledError, RemoteUnreachableError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_CONNECT_TIMEOUT = 10.0


@dataclass(frozen=True)
class DialPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    backoff_unit: float = 1.0  # 秒


def backoff_delay(attempt: int, max_attempts: int = DEFAULT_MAX_ATTEMPTS, unit: float = 1.0) -> float:
    """
    第 attempt 次失败后的等待时间

    attempt 从 1 开始；最后一次尝试之后返回 0。
    """
    if attempt < 1 or attempt >= max_attempts:
        return 0.0
    return attempt * unit


def connect_with_deadline(host: str, port: int, timeout: float) -> socket.socket:
    """
    在 timeout 秒内连接 host:port

    解析出的多个地址依次尝试，共享同一个截止时间；DNS 解析本身不受 timeout 约束。
    """
    deadline = time.monotonic() + timeout
    last_error: Optional[OSError] = None

    for family, socktype, proto, _, sockaddr in socket.getaddrinfo(host, port, 0, socket.SOCK_STREAM):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        sock = socket.socket(family, socktype, proto)
        try:
            sock.settimeout(remaining)
            sock.connect(sockaddr)
        except OSError as e:
            sock.close()
            last_error = e
            continue
        return sock

    if last_error is None:
        last_error = socket.timeout(f"timed out connecting to {host}:{port}")
    raise last_error


def dial_with_retry(
    host: str,
    port: int,
    scope: Optional[CancellationScope] = None,
    policy: DialPolicy = DialPolicy(),
) -> socket.socket:
    """
    连接远端地址

    Args:
        host: 远端主机
        port: 远端端口
        scope: 取消作用域，退避等待期间被取消则放弃
        policy: 重试策略

    Returns:
        已连接的阻塞 socket

    Raises:
        RemoteUnreachableError: 所有尝试均失败
        DialCancelledError: 等待重试时被取消
    """
    address = f"{host}:{port}"
    scope = scope or CancellationScope()
    last_error: Optional[OSError] = None

    for attempt in range(1, policy.max_attempts + 1):
        if scope.cancelled:
            raise DialCancelledError(f"dial to {address} cancelled", cause=last_error)
        try:
            conn = connect_with_deadline(host, port, policy.connect_timeout)
        except OSError as e:
            last_error = e
            logger.warning(f"Connection attempt {attempt} to {address} failed: {e}")
            delay = backoff_delay(attempt, policy.max_attempts, policy.backoff_unit)
            if delay and scope.wait(delay):
                raise DialCancelledError(f"dial to {address} cancelled", cause=e)
            continue

        # 转发阶段没有超时
        conn.settimeout(None)
        return conn

    raise RemoteUnreachableError(
        f"failed to connect to {address} after {policy.max_attempts} attempts",
        address=address,
        attempts=policy.max_attempts,
        cause=last_error,
    )
