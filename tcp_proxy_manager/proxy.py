"""
单个代理：监听 socket + accept 循环

状态: listening -> draining -> closed

accept() 本身不可取消，取消回调通过 shutdown 监听 socket 将其唤醒；
accept 超时作为兜底，保证循环定期检查取消状态。
"""

import logging
import socket
import threading
from enum import Enum
from typing import Callable, Optional, Tuple

from tcp_proxy_manager.cancellation import CancellationScope
from tcp_proxy_manager.config import ProxyDefinition
from tcp_proxy_manager.dialer import DialPolicy, dial_with_retry
from tcp_proxy_manager.errors import (
    AcceptTransientError,
    BindError,
    DialCancelledError,
    RemoteUnreachableError,
)
from tcp_proxy_manager.relay import relay, shutdown_socket

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 128
ACCEPT_POLL_INTERVAL = 1.0
ACCEPT_ERROR_PAUSE = 0.1

Spawn = Callable[..., threading.Thread]


class ProxyState(str, Enum):
    LISTENING = "listening"
    DRAINING = "draining"
    CLOSED = "closed"


def open_listener(host: str, port: int, backlog: int = LISTEN_BACKLOG) -> socket.socket:
    """
    绑定并监听本地地址

    Raises:
        BindError: 端口被占用、权限不足或地址不可用
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        listener = socket.create_server((host, port), family=family, backlog=backlog)
    except OSError as e:
        raise BindError(f"failed to listen on {host}:{port}", host=host, port=port, cause=e) from e
    listener.settimeout(ACCEPT_POLL_INTERVAL)
    return listener


class Proxy:
    def __init__(
        self,
        definition: ProxyDefinition,
        listener: socket.socket,
        scope: CancellationScope,
        spawn: Spawn,
        dial_policy: DialPolicy = DialPolicy(),
    ):
        self.definition = definition
        self.scope = scope
        self.active = True
        self.state = ProxyState.LISTENING
        self._listener = listener
        self._spawn = spawn
        self._dial_policy = dial_policy
        self._close_lock = threading.Lock()
        self._listener_closed = False
        self.local_address: Tuple[str, int] = listener.getsockname()[:2]

        scope.on_cancel(self._on_cancel)

    @property
    def name(self) -> str:
        return self.definition.name

    def cancel(self) -> None:
        self.scope.cancel()

    def serve(self) -> None:
        """accept 循环，直到作用域被取消"""
        try:
            while not self.scope.cancelled:
                try:
                    accepted = self._accept()
                except AcceptTransientError as e:
                    logger.warning(f"Failed to accept connection for proxy {self.name}: {e.cause}")
                    self.scope.wait(ACCEPT_ERROR_PAUSE)
                    continue
                if accepted is None:
                    continue
                conn, addr = accepted
                try:
                    self._spawn(self._handle_connection, conn, addr, name=f"{self.name}:conn")
                except RuntimeError as e:
                    logger.error(f"Failed to spawn connection handler for proxy {self.name}: {e}")
                    conn.close()
        finally:
            self._close_listener()
            self.active = False
            self.state = ProxyState.CLOSED
            logger.debug(f"Proxy {self.name} accept loop exited")

    def _accept(self) -> Optional[Tuple[socket.socket, tuple]]:
        """
        接受一个连接

        Returns:
            (conn, addr)；超时或作用域已取消时返回 None

        Raises:
            AcceptTransientError: 未取消时的 accept 错误
        """
        try:
            conn, addr = self._listener.accept()
        except socket.timeout:
            return None
        except OSError as e:
            if self.scope.cancelled:
                return None
            raise AcceptTransientError(f"accept failed on {self.name}", cause=e) from e
        conn.settimeout(None)
        return conn, addr

    def _handle_connection(self, client: socket.socket, client_addr: tuple) -> None:
        cfg = self.definition
        conn_scope = self.scope.child()
        conn_scope.on_cancel(lambda: shutdown_socket(client))
        try:
            try:
                server = dial_with_retry(cfg.remote_host, cfg.remote_port, conn_scope, self._dial_policy)
            except RemoteUnreachableError as e:
                logger.error(
                    f"Failed to connect to remote server {e.address} for proxy {self.name} "
                    f"after {e.attempts} attempts: {e.cause}"
                )
                return
            except DialCancelledError as e:
                logger.debug(f"Proxy {self.name}: {e}")
                return

            peer = f"{client_addr[0]}:{client_addr[1]}"
            logger.info(f"Established connection for proxy {self.name}: {peer} -> {cfg.remote_address}")
            result = relay(client, server, conn_scope, self.name)
            logger.debug(
                f"Connection closed for proxy {self.name}: {peer} "
                f"(sent={result.bytes_sent} bytes, received={result.bytes_received} bytes)"
            )
        finally:
            conn_scope.cancel()
            conn_scope.release()
            try:
                client.close()
            except OSError:
                pass

    def _on_cancel(self) -> None:
        if self.state is ProxyState.LISTENING:
            self.state = ProxyState.DRAINING
        shutdown_socket(self._listener)

    def _close_listener(self) -> None:
        with self._close_lock:
            if self._listener_closed:
                return
            self._listener_closed = True
        try:
            self._listener.close()
        except OSError as e:
            logger.debug(f"Proxy {self.name} listener close error: {e}")
