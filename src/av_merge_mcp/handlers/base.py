"""Tool Handler 基础抽象。

定义工具处理器的协议和上下文。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from mcp.types import TextContent

if TYPE_CHECKING:
    from ..config import Config
    from ..merger import VideoAudioMerger
    from ..orchestrator import RequestRegistry

__all__ = [
    "ToolContext",
    "ToolHandler",
]


@dataclass
class ToolContext:
    """工具执行上下文。

    封装工具执行所需的依赖，避免在函数间传递大量参数。
    merger_factory 每次调用创建新的合并器，保证请求间无共享状态。
    """

    config: "Config"
    registry: "RequestRegistry | None"
    merger_factory: Callable[[], "VideoAudioMerger"]

    def resolve_debug(self, arguments: dict[str, Any]) -> bool:
        """统一解析 debug 开关。"""
        if arguments.get("debug") is not None:
            return bool(arguments["debug"])
        return self.config.debug


class ToolHandler(ABC):
    """工具处理器协议。"""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @abstractmethod
    def get_input_schema(self) -> dict[str, Any]:
        """获取输入参数 schema。"""
        ...

    @abstractmethod
    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理工具调用。

        Args:
            arguments: 工具参数
            ctx: 执行上下文

        Returns:
            TextContent 列表
        """
        ...
