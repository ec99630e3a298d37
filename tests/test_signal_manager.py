"""SignalManager 模块测试。

- SIGINT 各模式下的处理策略
- 双击强制退出
- SIGTERM 优雅退出
- 真实信号投递（仅 POSIX）
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from unittest import mock

import pytest

from av_merge_mcp.config import SigintMode, reload_config
from av_merge_mcp.orchestrator import RequestRegistry
from av_merge_mcp.signal_manager import SignalManager


@pytest.fixture
def registry() -> RequestRegistry:
    return RequestRegistry()


@pytest.fixture
def running_merge(registry: RequestRegistry) -> mock.MagicMock:
    """一个进行中的合并请求。"""
    task = mock.MagicMock(spec=asyncio.Task)
    task.done.return_value = False
    registry.register("req-1", "merge_video_audio", task, "/out/merged.mp4")
    return task


def make_manager(registry: RequestRegistry, **kwargs) -> SignalManager:
    """构造未安装处理器的管理器，事件循环用 mock 代替。"""
    manager = SignalManager(registry, **kwargs)
    manager._shutdown_event = asyncio.Event()
    manager._loop = mock.MagicMock()
    return manager


class TestSignalManagerInit:
    """初始化测试。"""

    def test_defaults_from_config(self, registry: RequestRegistry):
        reload_config()
        manager = SignalManager(registry)

        assert manager.registry is registry
        assert manager.sigint_mode == SigintMode.CANCEL
        assert manager.double_tap_window == 1.0

    def test_env_config(self, registry: RequestRegistry, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("AVM_SIGINT_MODE", "cancel_then_exit")
        monkeypatch.setenv("AVM_SIGINT_DOUBLE_TAP_WINDOW", "2.5")
        reload_config()
        try:
            manager = SignalManager(registry)
            assert manager.sigint_mode == SigintMode.CANCEL_THEN_EXIT
            assert manager.double_tap_window == 2.5
        finally:
            monkeypatch.delenv("AVM_SIGINT_MODE")
            monkeypatch.delenv("AVM_SIGINT_DOUBLE_TAP_WINDOW")
            reload_config()

    def test_explicit_values_win(self, registry: RequestRegistry):
        manager = SignalManager(registry, sigint_mode=SigintMode.EXIT, double_tap_window=2.0)
        assert manager.sigint_mode == SigintMode.EXIT
        assert manager.double_tap_window == 2.0


class TestSigintCancel:
    """CANCEL 模式。"""

    def test_active_merge_cancelled_server_stays_up(self, registry, running_merge):
        manager = make_manager(registry, sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        running_merge.cancel.assert_called_once()
        assert manager.is_shutdown_requested is False
        manager._loop.call_soon_threadsafe.assert_not_called()

    def test_idle_sigint_shuts_down(self, registry):
        manager = make_manager(registry, sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_called_once_with(manager._shutdown_event.set)


class TestSigintExit:
    """EXIT 模式。"""

    def test_shuts_down_without_cancelling(self, registry, running_merge):
        """EXIT 模式下不逐个取消，由关闭流程统一清理。"""
        manager = make_manager(registry, sigint_mode=SigintMode.EXIT)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        running_merge.cancel.assert_not_called()


class TestSigintCancelThenExit:
    """CANCEL_THEN_EXIT 模式。"""

    def test_first_cancels_and_marks(self, registry, running_merge):
        manager = make_manager(registry, sigint_mode=SigintMode.CANCEL_THEN_EXIT)

        manager._handle_sigint()

        running_merge.cancel.assert_called_once()
        assert manager._shutdown_requested is True
        assert manager.is_force_exit is False
        manager._loop.call_soon_threadsafe.assert_not_called()

    def test_second_within_window_forces_exit(self, registry, running_merge):
        manager = make_manager(
            registry,
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=5.0,
        )

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        manager._loop.call_soon_threadsafe.assert_called()

    def test_second_outside_window_does_not_force(self, registry, running_merge):
        manager = make_manager(
            registry,
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=0.5,
        )

        with mock.patch("av_merge_mcp.signal_manager.time.time", side_effect=[100.0, 110.0]):
            manager._handle_sigint()
            manager._handle_sigint()

        assert manager.is_force_exit is False


class TestSigterm:
    def test_cancels_all_and_shuts_down(self, registry, running_merge):
        manager = make_manager(registry)

        manager._handle_sigterm()

        running_merge.cancel.assert_called_once()
        assert manager.is_shutdown_requested is True


class TestShutdownCallback:
    def test_callback_invoked(self, registry):
        callback = mock.MagicMock()
        manager = make_manager(registry, sigint_mode=SigintMode.EXIT, on_shutdown=callback)

        manager._handle_sigint()

        callback.assert_called_once()

    def test_callback_error_does_not_block_shutdown(self, registry):
        callback = mock.MagicMock(side_effect=OSError("stdin already closed"))
        manager = make_manager(registry, sigint_mode=SigintMode.EXIT, on_shutdown=callback)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_called_once()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handling")
class TestSignalDelivery:
    """真实信号投递测试（仅 POSIX）。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry):
        manager = SignalManager(registry)

        await manager.start()
        assert manager._running is True
        assert manager._loop is asyncio.get_running_loop()

        await manager.stop()
        assert manager._running is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_sigterm_sets_shutdown_event(self, registry, running_merge):
        manager = SignalManager(registry)
        await manager.start()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(manager.wait_for_shutdown(), timeout=5)
        finally:
            await manager.stop()

        assert manager.is_shutdown_requested is True
        running_merge.cancel.assert_called_once()
