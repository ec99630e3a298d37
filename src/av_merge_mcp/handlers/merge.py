"""合并相关工具处理器。

- merge_video_audio: 合并一个视频流和一个音频流
- ffmpeg_info: 定位并探测 FFmpeg，返回版本和平台信息
"""

from __future__ import annotations

import logging
from typing import Any

from mcp.types import TextContent
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from .base import ToolContext, ToolHandler
from ..discovery import describe_platform
from ..response_formatter import (
    DebugInfo,
    ErrorCode,
    ResponseData,
    format_error_response,
    get_formatter,
)
from ..runtime import ExecutionError, ExecutionTimeoutError

__all__ = [
    "FFmpegInfoHandler",
    "MergeHandler",
    "MergeRequest",
]

logger = logging.getLogger(__name__)


class MergeRequest(BaseModel):
    """merge_video_audio 的参数。"""

    model_config = ConfigDict(extra="ignore")

    video_path: str = Field(min_length=1, description="Path of the source video stream file.")
    audio_path: str = Field(min_length=1, description="Path of the source audio stream file.")
    output_path: str = Field(
        min_length=1,
        description="Destination file. Parent directories are created; an existing file is overwritten.",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        le=3600,
        description="Merge timeout in seconds. Defaults to AVM_MERGE_TIMEOUT (30s).",
    )
    debug: bool | None = Field(default=None, description="Include execution statistics in the response.")

    @field_validator("video_path", "audio_path", "output_path")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        # 路径原样保留（POSIX 允许首尾空白），只拒绝全空白
        if not value.strip():
            raise PydanticCustomError("blank_string", "Value must not be blank")
        return value


def describe_validation_error(error: ValidationError) -> str:
    """将 pydantic 校验错误转换为一行可读信息。"""
    missing: list[str] = []
    invalid: list[str] = []
    for item in error.errors():
        field_name = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        if item.get("type") in ("missing", "string_too_short", "blank_string"):
            missing.append(field_name)
        else:
            invalid.append(f"{field_name}: {item.get('msg', 'invalid value')}")

    parts = []
    if missing:
        parts.append(f"Missing required arguments: {', '.join(missing)}")
    if invalid:
        parts.append(f"Invalid arguments: {'; '.join(invalid)}")
    return ". ".join(parts)


class MergeHandler(ToolHandler):
    """merge_video_audio 工具处理器。"""

    @property
    def name(self) -> str:
        return "merge_video_audio"

    @property
    def description(self) -> str:
        return (
            "Remux a video stream file and an audio stream file into one output "
            "file with FFmpeg (stream copy, no re-encoding). Returns the output "
            "path on success, or an error with code INVALID_ARGUMENT / MERGE_ERROR."
        )

    def get_input_schema(self) -> dict[str, Any]:
        return MergeRequest.model_json_schema()

    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理合并调用。

        参数缺失时在接触 FFmpeg 之前返回 INVALID_ARGUMENT；
        所有执行失败统一为 MERGE_ERROR，具体类型放在 kind 属性中。
        """
        try:
            request = MergeRequest.model_validate(arguments or {})
        except ValidationError as e:
            message = describe_validation_error(e)
            logger.info(f"Rejected merge request: {message}")
            return format_error_response(message, code=ErrorCode.INVALID_ARGUMENT)

        debug = ctx.resolve_debug(arguments or {})
        merger = ctx.merger_factory()

        try:
            result = await merger.merge(
                request.video_path,
                request.audio_path,
                request.output_path,
                timeout=request.timeout,
            )
        except ExecutionError as e:
            logger.error(f"Merge failed [{e.code}]: {e}")
            data = ResponseData(
                answer="",
                success=False,
                error=str(e),
                error_code=ErrorCode.MERGE_ERROR,
                error_kind=e.code,
            )
            if isinstance(e, ExecutionTimeoutError):
                data.output_lines = e.output
                data.debug_info = DebugInfo(
                    duration_sec=e.elapsed,
                    line_count=len(e.output),
                    timed_out=True,
                    log_file=ctx.config.log_file,
                )
            return [TextContent(type="text", text=get_formatter().format(data, debug=debug))]

        outcome = result.outcome
        data = ResponseData(
            answer=f"Merged {request.video_path} + {request.audio_path}",
            output_path=str(result.output_path),
            debug_info=DebugInfo(
                ffmpeg_path=str(result.ffmpeg_path),
                duration_sec=outcome.duration_sec,
                exit_code=outcome.exit_code,
                line_count=len(outcome.output),
                log_file=ctx.config.log_file,
            ),
        )
        return [TextContent(type="text", text=get_formatter().format(data, debug=debug))]


class FFmpegInfoHandler(ToolHandler):
    """ffmpeg_info 工具处理器。"""

    @property
    def name(self) -> str:
        return "ffmpeg_info"

    @property
    def description(self) -> str:
        return (
            "Locate the FFmpeg binary, run `ffmpeg -version` and report the "
            "version line, binary path and platform/ABI information."
        )

    def get_input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        merger = ctx.merger_factory()
        try:
            binary = merger.resolve_binary()
            outcome = await merger.probe(binary)
        except ExecutionError as e:
            logger.error(f"FFmpeg probe failed [{e.code}]: {e}")
            return format_error_response(
                str(e), code=ErrorCode.FFMPEG_UNAVAILABLE, kind=e.code
            )

        version_line = next((line for line in outcome.output if line.strip()), "")
        answer = "\n".join([
            version_line,
            f"Path: {binary.path}",
            f"Library dir: {binary.lib_dir or 'none'}",
            f"Platform: {describe_platform().describe()}",
        ])
        return [TextContent(type="text", text=get_formatter().format(ResponseData(answer=answer)))]
