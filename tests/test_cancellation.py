"""
测试取消作用域与工作组
"""

import threading

from tcp_proxy_manager.cancellation import CancellationScope, WorkGroup


def test_cancel_propagates_to_descendants():
    root = CancellationScope()
    proxy = root.child()
    conn = proxy.child()

    root.cancel()

    assert proxy.cancelled
    assert conn.cancelled


def test_child_cancel_does_not_affect_parent():
    root = CancellationScope()
    child = root.child()

    child.cancel()

    assert child.cancelled
    assert not root.cancelled


def test_child_of_cancelled_scope_starts_cancelled():
    root = CancellationScope()
    root.cancel()
    assert root.child().cancelled


def test_callbacks_run_once():
    scope = CancellationScope()
    calls = []
    scope.on_cancel(lambda: calls.append("a"))

    scope.cancel()
    scope.cancel()

    assert calls == ["a"]
    scope.on_cancel(lambda: calls.append("late"))
    assert calls == ["a", "late"]


def test_failing_callback_does_not_block_others():
    scope = CancellationScope()
    calls = []

    def _boom():
        raise RuntimeError("boom")

    scope.on_cancel(_boom)
    scope.on_cancel(lambda: calls.append("ok"))
    scope.cancel()

    assert calls == ["ok"]


def test_released_child_is_not_cancelled_by_parent():
    root = CancellationScope()
    child = root.child()
    child.release()

    root.cancel()

    assert not child.cancelled


def test_wait_returns_on_cancel():
    scope = CancellationScope()
    assert scope.wait(0.01) is False

    threading.Timer(0.05, scope.cancel).start()
    assert scope.wait(5) is True


def test_work_group_waits_for_nested_spawns():
    group = WorkGroup()
    release = threading.Event()
    finished = []

    def _inner():
        release.wait(5)
        finished.append("inner")

    def _outer():
        group.spawn(_inner)
        finished.append("outer")

    group.spawn(_outer)
    assert group.wait(0.1) is False

    release.set()
    assert group.wait(5) is True
    assert sorted(finished) == ["inner", "outer"]
    assert group.pending == 0


def test_work_group_survives_worker_exception():
    group = WorkGroup()

    def _fail():
        raise ValueError("worker failed")

    group.spawn(_fail)
    assert group.wait(5) is True
