"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_FFMPEG_SCRIPT = FIXTURES_DIR / "fake_ffmpeg.py"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """清除 AVM_* / FAKE_FFMPEG_* 环境变量，避免测试间相互影响。"""
    for key in list(os.environ):
        if key.startswith(("AVM_", "FAKE_FFMPEG_")):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def fresh_platform_info():
    """平台信息按进程缓存，每个测试前后清空。"""
    from av_merge_mcp.discovery import describe_platform

    describe_platform.cache_clear()
    yield
    describe_platform.cache_clear()


def make_executable(path: Path, content: str) -> Path:
    """写入脚本并设置可执行权限。"""
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_ffmpeg(tmp_path: Path) -> Path:
    """可执行的假 FFmpeg（shell 包装 → fake_ffmpeg.py）。"""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return make_executable(
        bin_dir / "ffmpeg",
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_FFMPEG_SCRIPT}" "$@"\n',
    )


@pytest.fixture
def media_files(tmp_path: Path) -> tuple[Path, Path, Path]:
    """(video, audio, output) 路径，输入文件已创建。"""
    media = tmp_path / "media"
    media.mkdir()
    video = media / "video.m4s"
    audio = media / "audio.m4s"
    video.write_bytes(b"\x00\x00\x00\x18ftypvideo")
    audio.write_bytes(b"\x00\x00\x00\x18ftypaudio")
    return video, audio, tmp_path / "out" / "merged.mp4"
