"""AVM 环境变量配置管理。

环境变量:
    AVM_FFMPEG_PATH: FFmpeg 可执行文件的显式路径
        - 未设置时依次尝试 AVM_LIB_DIR 和 PATH

    AVM_LIB_DIR: 随附的原生库目录
        - 设置后作为动态库搜索路径注入子进程环境
        - 例: Android 的 nativeLibraryDir

    AVM_FFMPEG_LIB_NAME: AVM_LIB_DIR 中 FFmpeg 的文件名
        - 默认 libffmpeg.so

    AVM_MERGE_TIMEOUT: 合并超时时间（秒）
        - 默认 30，限制在 1-3600 秒

    AVM_PROBE_TIMEOUT: `ffmpeg -version` 探测超时（秒）
        - 默认 10，限制在 1-300 秒

    AVM_READER_GRACE: 进程退出后等待输出读取任务的宽限时间（秒）
        - 默认 1.0，限制在 0-30 秒

    AVM_DEBUG: 调试模式
        - true/1/yes = 开启 (MCP 响应包含统计信息)
        - false/0/no = 关闭 (默认)

    AVM_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    AVM_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 取消进行中的合并（无活动请求则退出）(默认)
        - exit = 直接退出进程
        - cancel_then_exit = 先取消请求，第二次才退出

    AVM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode"]

DEFAULT_LIB_NAME = "libffmpeg.so"
DEFAULT_MERGE_TIMEOUT = 30.0
DEFAULT_PROBE_TIMEOUT = 10.0
DEFAULT_READER_GRACE = 1.0


class SigintMode(Enum):
    """SIGINT 处理模式。"""

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式，无效值返回 CANCEL。"""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(
    value: str | None,
    default: float,
    minimum: float,
    maximum: float,
) -> float:
    """解析浮点数环境变量，超出范围时截断，无效值返回默认值。"""
    if not value or not value.strip():
        return default
    try:
        number = float(value)
    except ValueError:
        return default
    return max(minimum, min(number, maximum))


def _parse_path(value: str | None) -> Path | None:
    """解析路径环境变量（支持 ~ 展开）。"""
    if not value or not value.strip():
        return None
    return Path(value.strip()).expanduser()


@dataclass
class Config:
    """AVM 配置。

    Attributes:
        ffmpeg_path: FFmpeg 显式路径
        lib_dir: 原生库目录
        lib_name: 原生库目录中 FFmpeg 的文件名
        merge_timeout: 合并超时（秒）
        probe_timeout: 探测超时（秒）
        reader_grace: 输出读取宽限时间（秒）
        debug: 调试模式（响应包含统计信息）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    ffmpeg_path: Path | None = None
    lib_dir: Path | None = None
    lib_name: str = DEFAULT_LIB_NAME
    merge_timeout: float = DEFAULT_MERGE_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    reader_grace: float = DEFAULT_READER_GRACE
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(ffmpeg_path={self.ffmpeg_path}, "
            f"lib_dir={self.lib_dir}, "
            f"lib_name={self.lib_name}, "
            f"merge_timeout={self.merge_timeout}, "
            f"probe_timeout={self.probe_timeout}, "
            f"reader_grace={self.reader_grace}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """生成临时目录下带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "av-merge-mcp"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"avm_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("AVM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    sigint_mode = os.environ.get("AVM_SIGINT_MODE")

    return Config(
        ffmpeg_path=_parse_path(os.environ.get("AVM_FFMPEG_PATH")),
        lib_dir=_parse_path(os.environ.get("AVM_LIB_DIR")),
        lib_name=(os.environ.get("AVM_FFMPEG_LIB_NAME") or "").strip() or DEFAULT_LIB_NAME,
        merge_timeout=_parse_float(
            os.environ.get("AVM_MERGE_TIMEOUT"), DEFAULT_MERGE_TIMEOUT, 1.0, 3600.0
        ),
        probe_timeout=_parse_float(
            os.environ.get("AVM_PROBE_TIMEOUT"), DEFAULT_PROBE_TIMEOUT, 1.0, 300.0
        ),
        reader_grace=_parse_float(
            os.environ.get("AVM_READER_GRACE"), DEFAULT_READER_GRACE, 0.0, 30.0
        ),
        debug=_parse_bool(os.environ.get("AVM_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=SigintMode.from_string(sigint_mode) if sigint_mode else SigintMode.CANCEL,
        sigint_double_tap_window=_parse_float(
            os.environ.get("AVM_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
