"""
取消作用域与工作组

CancellationScope 是分层的取消信号：root -> proxy -> connection。
取消父作用域会取消所有子作用域，并执行各自注册的回调（通常用于
shutdown 阻塞中的 socket，将其唤醒）。

WorkGroup 跟踪所有派生出的线程，关闭时等待其全部退出。
"""

import logging
import threading
from typing import Callable, List, Optional, Set

logger = logging.getLogger(__name__)


class CancellationScope:
    def __init__(self, parent: Optional["CancellationScope"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: Set["CancellationScope"] = set()
        self._callbacks: List[Callable[[], None]] = []
        self._parent = parent
        if parent is not None:
            parent._attach(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def child(self) -> "CancellationScope":
        """派生子作用域；父作用域已取消时子作用域立即处于取消状态"""
        return CancellationScope(self)

    def cancel(self) -> None:
        """
        取消当前作用域及其所有后代

        重复调用为空操作。
        """
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = self._callbacks
            children = list(self._children)
            self._callbacks = []
            self._children.clear()

        for callback in callbacks:
            self._run_callback(callback)
        for child in children:
            child.cancel()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """注册取消回调；已取消时立即执行"""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        self._run_callback(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """阻塞直到被取消或超时，返回是否已取消"""
        return self._event.wait(timeout)

    def release(self) -> None:
        """从父作用域中摘除（连接结束后调用，避免子作用域无限累积）"""
        if self._parent is not None:
            self._parent._detach(self)
            self._parent = None

    def _attach(self, child: "CancellationScope") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.add(child)
                return
        child.cancel()

    def _detach(self, child: "CancellationScope") -> None:
        with self._lock:
            self._children.discard(child)

    @staticmethod
    def _run_callback(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("cancellation callback failed")


class WorkGroup:
    """
    线程工作组

    spawn() 在启动线程前计数加一，线程结束时减一；嵌套派生的线程在
    父线程退出前已计入，因此 wait() 覆盖所有派生工作的传递闭包。
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._pending = 0

    @property
    def pending(self) -> int:
        with self._cond:
            return self._pending

    def spawn(self, target: Callable[..., None], *args, name: Optional[str] = None) -> threading.Thread:
        with self._cond:
            self._pending += 1

        def _run():
            try:
                target(*args)
            except Exception:
                logger.exception(f"unhandled error in worker {threading.current_thread().name}")
            finally:
                self._done()

        thread = threading.Thread(target=_run, name=name, daemon=True)
        try:
            thread.start()
        except BaseException:
            self._done()
            raise
        return thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """等待所有工作退出，返回是否全部完成"""
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout)

    def _done(self) -> None:
        with self._cond:
            self._pending -= 1
            if self._pending == 0:
                self._cond.notify_all()
