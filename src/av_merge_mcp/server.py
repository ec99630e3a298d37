"""AV Merge MCP Server。

暴露两个工具：
    merge_video_audio: 用 FFmpeg 合并视频流与音频流（流复制）
    ffmpeg_info: 探测 FFmpeg 并返回版本/平台信息

每次工具调用都登记到 RequestRegistry，取消请求会终止正在运行的 FFmpeg。
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import get_config
from .handlers import FFmpegInfoHandler, MergeHandler, ToolContext, ToolHandler
from .merger import VideoAudioMerger
from .orchestrator import RequestRegistry
from .response_formatter import ErrorCode, format_error_response

__all__ = ["create_server", "HANDLERS"]

logger = logging.getLogger(__name__)

HANDLERS: dict[str, Callable[[], ToolHandler]] = {
    "merge_video_audio": MergeHandler,
    "ffmpeg_info": FFmpegInfoHandler,
}


def create_server(
    registry: RequestRegistry | None = None,
    merger_factory: Callable[[], VideoAudioMerger] | None = None,
) -> Server:
    """创建 MCP Server 实例。

    Args:
        registry: 请求注册表（可选，用于信号取消）
        merger_factory: 合并器工厂（可选，测试时注入）
    """
    config = get_config()
    server = Server("av-merge-mcp")
    factory = merger_factory or (lambda: VideoAudioMerger(config))

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        tools = []
        for make_handler in HANDLERS.values():
            handler = make_handler()
            tools.append(
                Tool(
                    name=handler.name,
                    description=handler.description,
                    inputSchema=handler.get_input_schema(),
                )
            )
        logger.debug(f"[MCP] list_tools returning {[t.name for t in tools]}")
        return tools

    # 参数由各 handler 自行校验，以便缺参时返回 INVALID_ARGUMENT
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        logger.debug(
            f"[MCP] call_tool request: {name} "
            f"{json.dumps(arguments, ensure_ascii=False, default=str)}"
        )

        make_handler = HANDLERS.get(name)
        if make_handler is None:
            return format_error_response(f"Unknown tool '{name}'", code=ErrorCode.UNKNOWN_TOOL)

        request_id = None
        if registry is not None:
            current_task = asyncio.current_task()
            if current_task:
                request_id = registry.generate_request_id()
                summary = str((arguments or {}).get("output_path", ""))
                registry.register(request_id, name, current_task, summary)
            else:
                logger.warning("No current_task, cannot register request")

        ctx = ToolContext(
            config=config,
            registry=registry,
            merger_factory=factory,
        )

        try:
            return await make_handler().handle(arguments or {}, ctx)

        except asyncio.CancelledError:
            logger.info(f"Tool '{name}' cancelled")
            raise

        except Exception as e:
            logger.exception(f"Tool '{name}' failed unexpectedly")
            return format_error_response(
                f"{type(e).__name__}: {e}", code=ErrorCode.MERGE_ERROR
            )

        finally:
            if registry and request_id:
                registry.unregister(request_id)

    return server
