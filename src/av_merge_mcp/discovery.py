"""FFmpeg 二进制定位与平台信息。

查找顺序:
1. AVM_FFMPEG_PATH（显式路径）
2. AVM_LIB_DIR/<AVM_FFMPEG_LIB_NAME>（随包分发的原生库目录，Android 布局）
3. PATH 中的 ffmpeg

原生库目录同时作为动态库搜索路径，通过环境变量覆盖传给子进程。
"""

from __future__ import annotations

import functools
import logging
import os
import platform
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from .config import Config
from .runtime.errors import PreconditionFailedError

__all__ = [
    "FFmpegBinary",
    "PlatformInfo",
    "describe_platform",
    "library_path_var",
    "list_libraries",
    "locate_ffmpeg",
]

logger = logging.getLogger(__name__)


def library_path_var() -> str:
    """返回当前平台的动态库搜索路径环境变量名。"""
    if sys.platform == "darwin":
        return "DYLD_LIBRARY_PATH"
    if sys.platform == "win32":
        return "PATH"
    return "LD_LIBRARY_PATH"


@dataclass(frozen=True)
class FFmpegBinary:
    """已定位的 FFmpeg 可执行文件。

    Attributes:
        path: 可执行文件路径
        lib_dir: 依赖的共享库目录（可选）
    """

    path: Path
    lib_dir: Path | None = None

    def env_overrides(self) -> dict[str, str]:
        """子进程环境变量覆盖（库搜索路径 → lib_dir）。"""
        if self.lib_dir is None:
            return {}
        var = library_path_var()
        if var == "PATH":
            # Windows 上追加而非替换，避免丢失系统 PATH
            return {var: os.pathsep.join([str(self.lib_dir), os.environ.get(var, "")])}
        return {var: str(self.lib_dir)}


@dataclass(frozen=True)
class PlatformInfo:
    """运行平台信息，用于架构不匹配时的错误提示。"""

    system: str
    machine: str
    abis: tuple[str, ...]
    python: str

    def describe(self) -> str:
        abis = ", ".join(self.abis) if self.abis else "unknown"
        return f"{self.system} {self.machine} (ABIs: {abis})"


def _android_abis() -> tuple[str, ...]:
    """读取 Android 支持的 ABI 列表（非 Android 返回空）。"""
    env_value = os.environ.get("ANDROID_ABIS")
    if env_value:
        return tuple(a.strip() for a in env_value.split(",") if a.strip())

    getprop = shutil.which("getprop")
    if getprop is None:
        return ()
    try:
        result = subprocess.run(
            [getprop, "ro.product.cpu.abilist"],
            capture_output=True,
            text=True,
            timeout=2,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"getprop failed: {e}")
        return ()
    return tuple(a.strip() for a in result.stdout.split(",") if a.strip())


@functools.lru_cache(maxsize=None)
def describe_platform() -> PlatformInfo:
    """收集当前平台信息。

    结果在进程内缓存：getprop 是阻塞调用，ABI 列表运行期间不会变化。
    """
    machine = platform.machine() or "unknown"
    abis = _android_abis() or (machine,)
    return PlatformInfo(
        system=platform.system() or sys.platform,
        machine=machine,
        abis=abis,
        python=platform.python_version(),
    )


def list_libraries(lib_dir: Path | None) -> str:
    """列出库目录下的文件名（调试日志用）。"""
    if lib_dir is None or not lib_dir.is_dir():
        return "none"
    names = sorted(p.name for p in lib_dir.iterdir())
    return ", ".join(names) if names else "none"


def locate_ffmpeg(config: Config) -> FFmpegBinary:
    """按配置定位 FFmpeg。

    Args:
        config: 当前配置

    Returns:
        FFmpegBinary

    Raises:
        PreconditionFailedError: 所有位置都找不到 FFmpeg
    """
    searched: list[str] = []

    if config.ffmpeg_path is not None:
        searched.append(str(config.ffmpeg_path))
        if config.ffmpeg_path.is_file():
            return FFmpegBinary(path=config.ffmpeg_path, lib_dir=config.lib_dir)

    if config.lib_dir is not None:
        candidate = config.lib_dir / config.lib_name
        searched.append(str(candidate))
        if candidate.is_file():
            return FFmpegBinary(path=candidate, lib_dir=config.lib_dir)

    searched.append("PATH")
    found = shutil.which("ffmpeg")
    if found:
        return FFmpegBinary(path=Path(found))

    raise PreconditionFailedError(
        f"FFmpeg binary not found (searched: {', '.join(searched)}).",
        platform=describe_platform().describe(),
    )
