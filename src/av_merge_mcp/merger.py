"""视频/音频合并服务。

在 ProcessRunner 之上实现一次完整的合并：
1. 定位 FFmpeg 并用 `-version` 探测其可运行
2. 校验输入文件存在
3. 以固定参数 `-i <video> -i <audio> -c copy -y <output>` 执行
4. 校验输出文件已生成

任一步失败都抛出 ExecutionError 子类，不存在部分成功。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .config import Config, get_config
from .discovery import FFmpegBinary, describe_platform, list_libraries, locate_ffmpeg
from .runtime import (
    ExecutionError,
    Invocation,
    Outcome,
    OutputMissingError,
    PreconditionFailedError,
    ProcessRunner,
)

__all__ = ["MergeResult", "VideoAudioMerger", "build_merge_args"]

logger = logging.getLogger(__name__)


def build_merge_args(video: str | Path, audio: str | Path, output: str | Path) -> tuple[str, ...]:
    """构建 FFmpeg 合并参数（流复制，覆盖已有输出）。"""
    return (
        "-i", str(video),
        "-i", str(audio),
        "-c", "copy",
        "-y",
        str(output),
    )


@dataclass(frozen=True)
class MergeResult:
    """合并结果。"""

    output_path: Path
    outcome: Outcome
    ffmpeg_path: Path


class VideoAudioMerger:
    """FFmpeg 视频/音频合并器。

    每次调用 merge() 都是独立的：重新定位（除非注入了 binary）、
    重新探测，没有跨调用的状态。

    Example:
        merger = VideoAudioMerger()
        result = await merger.merge("video.m4s", "audio.m4s", "out.mp4")
    """

    def __init__(
        self,
        config: Config | None = None,
        runner: ProcessRunner | None = None,
        binary: FFmpegBinary | None = None,
    ) -> None:
        self._config = config or get_config()
        self._runner = runner or ProcessRunner(reader_grace=self._config.reader_grace)
        self._binary = binary

    def resolve_binary(self) -> FFmpegBinary:
        """返回注入的 binary，否则按配置定位。"""
        if self._binary is not None:
            return self._binary
        return locate_ffmpeg(self._config)

    async def probe(self, binary: FFmpegBinary | None = None) -> Outcome:
        """探测 FFmpeg 是否可运行。

        要求退出码为 0 且输出非空；否则多半是架构不匹配或缺少依赖库。

        Raises:
            PreconditionFailedError: 探测失败
        """
        binary = binary or self.resolve_binary()
        invocation = Invocation(
            executable=binary.path,
            args=("-version",),
            env=binary.env_overrides(),
            timeout=self._config.probe_timeout,
        )

        logger.debug("Testing FFmpeg binary...")
        try:
            outcome = await self._runner.run(invocation)
        except ExecutionError as e:
            logger.error(f"FFmpeg binary test failed: {e}")
            raise PreconditionFailedError(
                f"FFmpeg binary is not compatible or missing dependencies. Error: {e}",
                platform=describe_platform().describe(),
            ) from e

        logger.debug(f"FFmpeg version output: {outcome.text}")
        if not outcome.output or not outcome.text.strip():
            raise PreconditionFailedError(
                "FFmpeg binary test failed: empty version output.",
                platform=describe_platform().describe(),
            )
        return outcome

    async def merge(
        self,
        video: str | Path,
        audio: str | Path,
        output: str | Path,
        *,
        timeout: float | None = None,
    ) -> MergeResult:
        """合并视频和音频。

        Args:
            video: 源视频路径
            audio: 源音频路径
            output: 输出路径（已存在则覆盖）
            timeout: 超时（秒），默认使用配置值

        Returns:
            MergeResult

        Raises:
            PreconditionFailedError: FFmpeg 不可用或输入不存在
            LaunchFailedError / ExecutionTimeoutError / NonZeroExitError: 执行失败
            OutputMissingError: 执行成功但输出不存在
        """
        video_path = Path(video)
        audio_path = Path(audio)
        output_path = Path(output)

        logger.info("Starting FFmpeg merge")
        logger.debug(f"Video: {video_path}")
        logger.debug(f"Audio: {audio_path}")
        logger.debug(f"Output: {output_path}")
        logger.debug(f"Device ABIs: {', '.join(describe_platform().abis)}")

        binary = self.resolve_binary()
        logger.debug(f"FFmpeg path: {binary.path}")
        logger.debug(f"Native libraries available: {list_libraries(binary.lib_dir)}")

        await self.probe(binary)

        if not video_path.is_file():
            raise PreconditionFailedError(f"Video file not found: {video_path}")
        if not audio_path.is_file():
            raise PreconditionFailedError(f"Audio file not found: {audio_path}")

        output_path.parent.mkdir(parents=True, exist_ok=True)

        invocation = Invocation(
            executable=binary.path,
            args=build_merge_args(video_path, audio_path, output_path),
            env=binary.env_overrides(),
            timeout=timeout or self._config.merge_timeout,
        )
        logger.debug(f"Executing: {' '.join(invocation.argv)}")

        outcome = await self._runner.run(
            invocation,
            on_line=lambda line: logger.debug(f"FFmpeg: {line}"),
        )
        logger.debug(f"FFmpeg exit code: {outcome.exit_code}")

        if not output_path.exists():
            raise OutputMissingError(output_path)

        logger.info(f"Merge completed successfully: {output_path} ({outcome.duration_sec:.2f}s)")
        return MergeResult(output_path=output_path, outcome=outcome, ffmpeg_path=binary.path)
