"""MCP 响应格式化器。

使用 XML-wrapped 文本格式，对 LLM 友好。

格式说明:
    - <answer>: 结果说明
    - <output_path>: 合并输出路径（成功时）
    - <error code="..." kind="...">: 错误码与描述（失败时）
    - <output>: FFmpeg 捕获的输出（非零退出时）
    - <debug_info>: 调试信息（debug=True 时输出）
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "DebugInfo",
    "ErrorCode",
    "ResponseData",
    "ResponseFormatter",
    "format_error_response",
    "get_formatter",
    "xml_escape",
]


class ErrorCode:
    """面向调用方的错误码。"""

    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    MERGE_ERROR = "MERGE_ERROR"
    FFMPEG_UNAVAILABLE = "FFMPEG_UNAVAILABLE"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"


def xml_escape(s: str | None) -> str:
    """XML 文本/属性转义。"""
    if s is None:
        return ""
    return (str(s).replace("&", "&amp;")
                  .replace("<", "&lt;")
                  .replace(">", "&gt;")
                  .replace('"', "&quot;"))


@dataclass
class DebugInfo:
    """调试信息。"""

    ffmpeg_path: str | None = None
    duration_sec: float = 0.0
    exit_code: int | None = None
    line_count: int = 0
    timed_out: bool = False
    log_file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.ffmpeg_path:
            data["ffmpeg_path"] = self.ffmpeg_path
        data["duration_sec"] = round(self.duration_sec, 3)
        if self.exit_code is not None:
            data["exit_code"] = self.exit_code
        data["line_count"] = self.line_count
        if self.timed_out:
            data["timed_out"] = True
        if self.log_file:
            data["log_file"] = self.log_file
        return data


@dataclass
class ResponseData:
    """响应数据。"""

    answer: str
    output_path: str = ""
    success: bool = True
    error: str | None = None
    error_code: str = ErrorCode.MERGE_ERROR
    error_kind: str = ""
    # 失败时附带的进程输出
    output_lines: list[str] = field(default_factory=list)
    debug_info: DebugInfo | None = None


class ResponseFormatter:
    """MCP 响应格式化器。

    Example:
        >>> formatter = ResponseFormatter()
        >>> data = ResponseData(answer="Merged", output_path="/sdcard/out.mp4")
        >>> output = formatter.format(data)
    """

    def format(
        self,
        data: ResponseData,
        *,
        debug: bool = False,
    ) -> str:
        """格式化响应数据。

        Args:
            data: 响应数据
            debug: 是否输出调试信息

        Returns:
            XML-wrapped 格式的响应字符串
        """
        if not data.success:
            return self._format_error(data, debug=debug)

        parts = ["<response>"]
        parts.append(self._format_answer(data.answer))
        if data.output_path:
            parts.append(f"  <output_path>{xml_escape(data.output_path)}</output_path>")
        if debug and data.debug_info:
            parts.append(self._format_debug_info(data.debug_info))
        parts.append("</response>")

        return "\n".join(parts)

    def _format_answer(self, answer: str) -> str:
        return f"  <answer>\n{xml_escape(answer)}\n  </answer>"

    def _format_debug_info(self, debug_info: DebugInfo) -> str:
        """格式化调试信息（XML 格式）。"""
        lines = ["  <debug_info>"]
        for key, value in debug_info.to_dict().items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, float):
                value = f"{value:.3f}"
            lines.append(f"    <{key}>{xml_escape(str(value))}</{key}>")
        lines.append("  </debug_info>")
        return "\n".join(lines)

    def _format_error(self, data: ResponseData, *, debug: bool = False) -> str:
        """格式化错误响应。"""
        attrs = f'code="{xml_escape(data.error_code)}"'
        if data.error_kind:
            attrs += f' kind="{xml_escape(data.error_kind)}"'

        parts = ["<response>"]
        parts.append(f"  <error {attrs}>{xml_escape(data.error or 'Unknown error')}</error>")

        if data.output_lines:
            parts.append("  <output>")
            parts.append(xml_escape("\n".join(data.output_lines)))
            parts.append("  </output>")

        if debug and data.debug_info:
            parts.append(self._format_debug_info(data.debug_info))

        parts.append("</response>")
        return "\n".join(parts)


# 全局实例
_formatter: ResponseFormatter | None = None


def get_formatter() -> ResponseFormatter:
    """获取全局格式化器实例。"""
    global _formatter
    if _formatter is None:
        _formatter = ResponseFormatter()
    return _formatter


def format_error_response(
    error: str,
    code: str = ErrorCode.MERGE_ERROR,
    kind: str = "",
) -> list[TextContent]:
    """统一的错误响应格式化函数。

    所有错误都以 <response><error code=...>...</error></response> 返回。
    """
    from mcp.types import TextContent

    response_data = ResponseData(
        answer="",
        success=False,
        error=error,
        error_code=code,
        error_kind=kind,
    )
    return [TextContent(type="text", text=get_formatter().format(response_data))]
