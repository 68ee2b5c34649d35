"""
代理管理器

为每个启用的代理定义启动一个 Proxy，并负责统一关闭：
取消根作用域 -> 逐个取消 Proxy -> 等待所有 accept 循环与连接线程退出。
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from tcp_proxy_manager.cancellation import CancellationScope, WorkGroup
from tcp_proxy_manager.config import ProxyDefinition
from tcp_proxy_manager.dialer import DialPolicy
from tcp_proxy_manager.errors import ConfigurationError
from tcp_proxy_manager.proxy import Proxy, open_listener

logger = logging.getLogger(__name__)


class ProxyRegistry:
    """name -> Proxy 映射，读写均在同一把锁下进行"""

    def __init__(self):
        self.lock = threading.RLock()
        self._proxies: Dict[str, Proxy] = {}

    def add(self, proxy: Proxy) -> None:
        with self.lock:
            if proxy.name in self._proxies:
                raise ConfigurationError(f"duplicate proxy name: {proxy.name}")
            self._proxies[proxy.name] = proxy

    def remove(self, name: str) -> Optional[Proxy]:
        with self.lock:
            return self._proxies.pop(name, None)

    def get(self, name: str) -> Optional[Proxy]:
        with self.lock:
            return self._proxies.get(name)

    def __contains__(self, name: str) -> bool:
        with self.lock:
            return name in self._proxies

    def __len__(self) -> int:
        with self.lock:
            return len(self._proxies)

    def snapshot(self) -> List[Proxy]:
        with self.lock:
            return list(self._proxies.values())


class ProxyManager:
    def __init__(
        self,
        definitions: Iterable[ProxyDefinition],
        dial_policy: Optional[DialPolicy] = None,
        parent_scope: Optional[CancellationScope] = None,
    ):
        self.definitions: List[ProxyDefinition] = list(definitions)
        self.registry = ProxyRegistry()
        self._scope = parent_scope.child() if parent_scope is not None else CancellationScope()
        self._work = WorkGroup()
        self._dial_policy = dial_policy or DialPolicy()
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False

    @property
    def pending_work(self) -> int:
        return self._work.pending

    def get_proxy(self, name: str) -> Optional[Proxy]:
        return self.registry.get(name)

    def start(self) -> None:
        """
        按顺序启动所有启用的代理

        任一代理启动失败即中止并抛出；已启动的代理保持运行，由调用方负责 shutdown。

        Raises:
            BindError: 本地监听失败
            ConfigurationError: 代理名称重复
        """
        for definition in self.definitions:
            if not definition.enabled:
                logger.info(f"Skipping disabled proxy: {definition.name}")
                continue
            self.start_proxy(definition)

    def start_proxy(self, definition: ProxyDefinition) -> Proxy:
        with self.registry.lock:
            if self._scope.cancelled:
                raise RuntimeError("proxy manager has been shut down")
            if definition.name in self.registry:
                raise ConfigurationError(f"duplicate proxy name: {definition.name}")

            listener = open_listener(definition.local_host, definition.local_port)
            proxy = Proxy(
                definition,
                listener,
                self._scope.child(),
                self._work.spawn,
                dial_policy=self._dial_policy,
            )
            self.registry.add(proxy)
            try:
                self._work.spawn(proxy.serve, name=f"{definition.name}:accept")
            except BaseException:
                # accept 循环未启动，监听 socket 不会被关闭
                self.registry.remove(definition.name)
                proxy.cancel()
                listener.close()
                raise

        host, port = proxy.local_address
        logger.info(f"Started proxy {definition.name}: {host}:{port} -> {definition.remote_address}")
        return proxy

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        关闭所有代理并等待所有派生工作退出

        重复调用为空操作。

        Returns:
            timeout 内所有工作是否均已退出
        """
        with self._shutdown_lock:
            first = not self._shutdown_started
            self._shutdown_started = True

        if first:
            logger.info("Shutting down proxy manager...")

        self._scope.cancel()

        with self.registry.lock:
            for proxy in self.registry.snapshot():
                if first:
                    logger.info(f"Closing proxy: {proxy.name}")
                proxy.cancel()

        done = self._work.wait(timeout)
        if not done:
            logger.warning(f"Proxy manager shutdown timed out, {self._work.pending} task(s) still running")
        elif first:
            logger.info("Proxy manager shutdown complete")
        return done
