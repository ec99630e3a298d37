"""Config 模块测试。

测试 AVM_* 环境变量解析和配置管理。
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest import mock

import pytest

from av_merge_mcp.config import Config, SigintMode, get_config, load_config, reload_config


class TestDefaults:
    """测试默认值。"""

    def test_defaults(self):
        """未设置任何变量时使用默认值。"""
        config = load_config()
        assert config.ffmpeg_path is None
        assert config.lib_dir is None
        assert config.lib_name == "libffmpeg.so"
        assert config.merge_timeout == 30.0
        assert config.probe_timeout == 10.0
        assert config.reader_grace == 1.0
        assert config.debug is False
        assert config.log_debug is False
        assert config.log_file is None
        assert config.sigint_mode is SigintMode.CANCEL
        assert config.sigint_double_tap_window == 1.0


class TestParsePaths:
    """测试路径解析。"""

    def test_ffmpeg_path(self):
        with mock.patch.dict(os.environ, {"AVM_FFMPEG_PATH": " /opt/ffmpeg/bin/ffmpeg "}):
            config = load_config()
            assert config.ffmpeg_path == Path("/opt/ffmpeg/bin/ffmpeg")

    def test_home_expanded(self):
        """支持 ~ 展开。"""
        with mock.patch.dict(os.environ, {"AVM_LIB_DIR": "~/lib"}):
            config = load_config()
            assert config.lib_dir == Path("~/lib").expanduser()

    def test_blank_means_unset(self):
        with mock.patch.dict(os.environ, {"AVM_FFMPEG_PATH": "  ", "AVM_FFMPEG_LIB_NAME": ""}):
            config = load_config()
            assert config.ffmpeg_path is None
            assert config.lib_name == "libffmpeg.so"


class TestParseTimeouts:
    """测试数值解析与范围截断。"""

    def test_merge_timeout(self):
        with mock.patch.dict(os.environ, {"AVM_MERGE_TIMEOUT": "120"}):
            assert load_config().merge_timeout == 120.0

    @pytest.mark.parametrize(
        "value,expected",
        [("0", 1.0), ("-5", 1.0), ("99999", 3600.0), ("abc", 30.0), ("", 30.0)],
    )
    def test_merge_timeout_clamped(self, value: str, expected: float):
        """超出范围截断，无效值回退默认。"""
        with mock.patch.dict(os.environ, {"AVM_MERGE_TIMEOUT": value}):
            assert load_config().merge_timeout == expected

    def test_reader_grace_zero_allowed(self):
        with mock.patch.dict(os.environ, {"AVM_READER_GRACE": "0"}):
            assert load_config().reader_grace == 0.0

    def test_probe_timeout_upper_bound(self):
        with mock.patch.dict(os.environ, {"AVM_PROBE_TIMEOUT": "1000"}):
            assert load_config().probe_timeout == 300.0

    def test_double_tap_window_lower_bound(self):
        with mock.patch.dict(os.environ, {"AVM_SIGINT_DOUBLE_TAP_WINDOW": "0.01"}):
            assert load_config().sigint_double_tap_window == 0.1


class TestParseBool:
    """测试布尔值解析。"""

    @pytest.mark.parametrize("value", ["true", "True", "TRUE", "1", "yes", "Yes", "on"])
    def test_truthy_values(self, value: str):
        """真值。"""
        with mock.patch.dict(os.environ, {"AVM_DEBUG": value}):
            assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "False", "0", "no", "off", ""])
    def test_falsy_values(self, value: str):
        """假值。"""
        with mock.patch.dict(os.environ, {"AVM_DEBUG": value}):
            assert load_config().debug is False

    def test_log_debug_sets_log_file(self):
        """开启日志调试时生成临时日志文件路径。"""
        with mock.patch.dict(os.environ, {"AVM_LOG_DEBUG": "1"}):
            config = load_config()
            assert config.log_debug is True
            assert config.log_file is not None
            assert Path(config.log_file).name.startswith("avm_debug_")
            assert Path(config.log_file).parent.is_dir()


class TestSigintMode:
    """测试 SIGINT 模式解析。"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("cancel", SigintMode.CANCEL),
            ("EXIT", SigintMode.EXIT),
            (" cancel_then_exit ", SigintMode.CANCEL_THEN_EXIT),
            ("bogus", SigintMode.CANCEL),
        ],
    )
    def test_from_string(self, value: str, expected: SigintMode):
        assert SigintMode.from_string(value) is expected

    def test_from_env(self):
        with mock.patch.dict(os.environ, {"AVM_SIGINT_MODE": "exit"}):
            assert load_config().sigint_mode is SigintMode.EXIT


class TestConfigMethods:
    """测试 Config 类方法。"""

    def test_repr(self):
        """字符串表示。"""
        config = Config(ffmpeg_path=Path("/opt/ffmpeg"), debug=True)
        repr_str = repr(config)
        assert "ffmpeg_path=/opt/ffmpeg" in repr_str
        assert "debug=True" in repr_str
        assert "sigint_mode=cancel" in repr_str


class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_returns_same_instance(self):
        """get_config 返回相同实例。"""
        reload_config()
        assert get_config() is get_config()

    def test_reload_config_creates_new_instance(self):
        """reload_config 创建新实例并读取最新环境变量。"""
        config1 = get_config()
        with mock.patch.dict(os.environ, {"AVM_MERGE_TIMEOUT": "45"}):
            config2 = reload_config()
        assert config1 is not config2
        assert config2.merge_timeout == 45.0
        reload_config()
