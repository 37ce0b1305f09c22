"""Tests for configuration loader."""

import os
from unittest.mock import patch

import pytest

from autopilot.config import Config, _load_yaml, get_config


@pytest.fixture(autouse=True)
def reset_config_singleton():
    """Reset the Config singleton between tests."""
    Config._instance = None
    yield
    Config._instance = None


def _load(tmp_path, yaml_text: str = "", **env) -> Config:
    path = tmp_path / "config.yaml"
    path.write_text(yaml_text)
    cfg = Config()
    with patch.dict(os.environ, {"AUTOPILOT_CONFIG": str(path), **env}):
        cfg.load()
    return cfg


class TestLoadYaml:
    def test_load_existing_yaml(self, tmp_path):
        f = tmp_path / "test.yaml"
        f.write_text("key: value\nnested:\n  a: 1\n")
        result = _load_yaml(f)
        assert result["key"] == "value"
        assert result["nested"]["a"] == 1

    def test_load_nonexistent_yaml(self, tmp_path):
        assert _load_yaml(tmp_path / "nope.yaml") == {}

    def test_load_empty_yaml(self, tmp_path):
        f = tmp_path / "empty.yaml"
        f.write_text("")
        assert _load_yaml(f) == {}


class TestConfig:
    def test_singleton(self):
        assert Config() is Config()

    def test_defaults_without_yaml(self, tmp_path):
        cfg = _load(tmp_path)
        assert cfg.session_prefix == "agent-"
        assert cfg.poll_interval_ms == 1000
        assert cfg.capture_lines == 200
        assert cfg.max_scan_chars == 8000
        assert cfg.install_default_presets is True
        assert cfg.automation_defaults == {}
        assert cfg.tmux_allowlist == []
        assert cfg.signal_dir == "/tmp"
        assert cfg.signal_file_prefix == "autopilot-"
        assert cfg.validate() == []

    def test_yaml_values(self, tmp_path):
        cfg = _load(
            tmp_path,
            "monitor:\n  session_prefix: jat-\n  capture_lines: 50\n"
            "automation:\n  max_scan_chars: 100\n  defaults:\n    enabled: false\n"
            "  tmux_command_allowlist: [select-window]\n"
            "signals:\n  dir: /var/run/x\n",
        )
        assert cfg.session_prefix == "jat-"
        assert cfg.capture_lines == 50
        assert cfg.max_scan_chars == 100
        assert cfg.automation_defaults == {"enabled": False}
        assert cfg.tmux_allowlist == ["select-window"]
        assert cfg.signal_dir == "/var/run/x"

    def test_env_overrides(self, tmp_path):
        cfg = _load(tmp_path, LOG_LEVEL="DEBUG", AUTOPILOT_DB=str(tmp_path / "x.db"))
        assert cfg.log_level == "DEBUG"
        assert cfg.db_path == str(tmp_path / "x.db")

    def test_load_idempotent(self, tmp_path):
        cfg = _load(tmp_path, LOG_LEVEL="WARNING")
        with patch.dict(os.environ, {"LOG_LEVEL": "DEBUG"}):
            cfg.load()
        assert cfg.log_level == "WARNING"

    def test_validate_reports_problems(self, tmp_path):
        cfg = _load(
            tmp_path,
            "monitor:\n  poll_interval_ms: 0\n  session_prefix: ''\n"
            "automation:\n  max_scan_chars: -1\n",
        )
        problems = cfg.validate()
        assert len(problems) == 3
        assert any("poll_interval_ms" in p for p in problems)

    def test_get_config_loads(self, tmp_path):
        with patch.dict(os.environ, {"AUTOPILOT_CONFIG": str(tmp_path / "missing.yaml")}):
            cfg = get_config()
        assert cfg._loaded is True
        assert cfg.monitor_config == {}
