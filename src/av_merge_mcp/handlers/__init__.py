"""Tool Handlers 模块。

提供工具处理器抽象和具体实现。
"""

from .base import ToolContext, ToolHandler
from .merge import FFmpegInfoHandler, MergeHandler, MergeRequest

__all__ = [
    "ToolContext",
    "ToolHandler",
    "FFmpegInfoHandler",
    "MergeHandler",
    "MergeRequest",
]
