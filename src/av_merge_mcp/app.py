"""AV Merge MCP 应用入口。

包含服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import get_config
from .discovery import describe_platform
from .orchestrator import RequestRegistry
from .server import create_server
from .signal_manager import SignalManager

__all__ = ["run_server", "main", "setup_logging"]

logger = logging.getLogger(__name__)


async def run_server() -> None:
    """运行 MCP Server（stdio 传输）。

    - server_task: 运行 MCP server
    - shutdown_watcher: 监听 shutdown 事件并取消 server_task
    """
    config = get_config()
    logger.info(f"Starting AV Merge MCP Server: {config}")
    # 在开始服务前完成阻塞的平台探测（结果被缓存）
    logger.info(f"Platform: {describe_platform().describe()}")

    registry = RequestRegistry()
    server = create_server(registry)
    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    def on_shutdown() -> None:
        # 关闭 stdin 以中断 stdio_server 的阻塞读取
        try:
            sys.stdin.close()
        except OSError as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(registry=registry, on_shutdown=on_shutdown)

    async def _run_server_impl() -> None:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )

    async def _watch_shutdown() -> None:
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        await signal_manager.start()

        server_task = asyncio.create_task(_run_server_impl(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    finally:
        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        # 确保没有遗留的 FFmpeg 进程
        registry.cancel_all()
        await signal_manager.stop()
        logger.info("run_server: cleanup completed")

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)


def setup_logging() -> None:
    """配置日志输出。

    默认输出到 stderr（INFO）；AVM_LOG_DEBUG 开启时输出到临时文件（DEBUG）。
    stdout 保留给 MCP JSON-RPC，不能写日志。
    """
    config = get_config()
    log_format = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(log_format)

    # 第三方库保持 WARNING，只对 av_merge_mcp 命名空间启用详细日志
    logging.basicConfig(level=logging.WARNING, handlers=[handler])
    logging.getLogger("av_merge_mcp").setLevel(log_level)


def main() -> None:
    """主入口点。"""
    setup_logging()
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
