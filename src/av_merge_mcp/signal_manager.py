"""信号管理模块。

将 OS 信号转换为请求级别的操作：
- SIGINT: 取消进行中的合并（而不是直接退出进程）
- SIGTERM: 取消所有请求并优雅退出

支持的配置：
- AVM_SIGINT_MODE: cancel | exit | cancel_then_exit
- AVM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable

from .config import SigintMode, get_config
from .orchestrator import RequestRegistry

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        registry = RequestRegistry()
        signal_manager = SignalManager(registry)

        await signal_manager.start()
        try:
            await server.run()
        finally:
            await signal_manager.stop()
        ```

    Attributes:
        registry: 请求注册表
        sigint_mode: SIGINT 处理模式
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        registry: RequestRegistry,
        sigint_mode: SigintMode | None = None,
        double_tap_window: float | None = None,
        on_shutdown: Callable[[], None] | None = None,
    ) -> None:
        self.registry = registry

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: asyncio.Event | None = None
        self._running: bool = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """安装 SIGINT/SIGTERM 处理器，必须在事件循环中调用。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
        else:
            signal.signal(signal.SIGINT, lambda sig, frame: self._handle_sigint())

        logger.debug(
            f"Signal handlers installed (mode={self.sigint_mode.value}, "
            f"double_tap_window={self.double_tap_window}s)"
        )

    async def stop(self) -> None:
        """移除信号处理器。"""
        if not self._running:
            return
        self._running = False

        if sys.platform != "win32" and self._loop:
            self._loop.remove_signal_handler(signal.SIGINT)
            self._loop.remove_signal_handler(signal.SIGTERM)
        elif sys.platform == "win32":
            signal.signal(signal.SIGINT, signal.default_int_handler)

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待关闭信号。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        """处理 SIGINT。

        - 双击窗口内且已请求关闭：强制退出
        - EXIT 模式：请求关闭
        - 有活动请求：取消（CANCEL_THEN_EXIT 模式下同时标记关闭意图）
        - 无活动请求：请求关闭
        """
        now = time.time()
        since_last = now - self._last_sigint_time
        self._last_sigint_time = now

        if since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_exit = True
            self.registry.cancel_all()
            self._request_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._request_shutdown()
            return

        if not self.registry.has_active_requests():
            logger.info(
                f"SIGINT received (mode={self.sigint_mode.value}), "
                f"no active requests, requesting shutdown"
            )
            self._request_shutdown()
            return

        count = self.registry.cancel_all()
        logger.info(
            f"SIGINT received (mode={self.sigint_mode.value}), cancelled {count} request(s)"
        )
        if self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            # 只标记，第二次 SIGINT 才真正退出
            self._shutdown_requested = True

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM：取消所有请求并请求关闭。"""
        logger.info("SIGTERM received, initiating graceful shutdown")
        self.registry.cancel_all()
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
