"""
双向字节转发

client->server 与 server->client 两个方向各一个线程。任一方向结束
（EOF 或出错）即取消连接作用域；取消回调 shutdown 两端 socket，
唤醒另一方向，随后关闭两端。另一方向未写完的数据不保证送达。
"""

import logging
import socket
import threading
from dataclasses import dataclass, field
from typing import Dict, List

from tcp_proxy_manager.cancellation import CancellationScope
from tcp_proxy_manager.errors import RelayIOError

logger = logging.getLogger(__name__)

CLIENT_TO_SERVER = "client->server"
SERVER_TO_CLIENT = "server->client"

BUFFER_SIZE = 65536


@dataclass
class RelayResult:
    transferred: Dict[str, int] = field(default_factory=dict)
    errors: List[RelayIOError] = field(default_factory=list)

    @property
    def bytes_sent(self) -> int:
        return self.transferred.get(CLIENT_TO_SERVER, 0)

    @property
    def bytes_received(self) -> int:
        return self.transferred.get(SERVER_TO_CLIENT, 0)


def shutdown_socket(sock: socket.socket) -> None:
    """shutdown 读写两端以唤醒阻塞中的 recv/accept；socket 由持有者关闭"""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # 已关闭或未连接
        pass


def _close_socket(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError:
        pass


def _pump(
    src: socket.socket,
    dst: socket.socket,
    direction: str,
    scope: CancellationScope,
    result: RelayResult,
    proxy_name: str,
) -> None:
    total = 0
    try:
        while True:
            data = src.recv(BUFFER_SIZE)
            if not data:
                break
            dst.sendall(data)
            total += len(data)
    except OSError as e:
        # 取消后的读写错误是 teardown 的结果
        if not scope.cancelled:
            error = RelayIOError(f"error copying {direction}", direction=direction, cause=e)
            result.errors.append(error)
            logger.warning(f"Error copying {direction} for proxy {proxy_name}: {e}")
    finally:
        result.transferred[direction] = total
        scope.cancel()


def relay(
    client: socket.socket,
    server: socket.socket,
    scope: CancellationScope,
    proxy_name: str = "",
) -> RelayResult:
    """
    在 client 与 server 之间转发字节，直到任一方向结束或 scope 被取消

    返回时两端 socket 均已关闭，scope 已被取消。
    """
    result = RelayResult()
    scope.on_cancel(lambda: shutdown_socket(client))
    scope.on_cancel(lambda: shutdown_socket(server))

    pumps = [
        threading.Thread(
            target=_pump,
            args=(client, server, CLIENT_TO_SERVER, scope, result, proxy_name),
            name=f"{proxy_name}:{CLIENT_TO_SERVER}",
            daemon=True,
        ),
        threading.Thread(
            target=_pump,
            args=(server, client, SERVER_TO_CLIENT, scope, result, proxy_name),
            name=f"{proxy_name}:{SERVER_TO_CLIENT}",
            daemon=True,
        ),
    ]
    try:
        for pump in pumps:
            pump.start()
        scope.wait()
    finally:
        scope.cancel()
        for pump in pumps:
            if pump.ident is not None:
                pump.join()
        _close_socket(client)
        _close_socket(server)

    return result
