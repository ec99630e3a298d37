"""AV Merge MCP - 用 FFmpeg 合并视频流与音频流的 MCP 服务器。

环境变量:
    AVM_FFMPEG_PATH: FFmpeg 可执行文件路径（可选）
    AVM_LIB_DIR: 随附原生库目录（可选）
    AVM_MERGE_TIMEOUT: 合并超时 (默认 30s)
    AVM_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    uvx av-merge-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
