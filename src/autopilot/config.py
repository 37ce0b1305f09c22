"""Configuration loader — .env overrides + config.yaml preferences."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

# Paths
AUTOPILOT_HOME = Path.home() / ".autopilot"
ENV_PATH = AUTOPILOT_HOME / ".env"
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_YAML_PATH = PROJECT_ROOT / "config.yaml"
DB_PATH = AUTOPILOT_HOME / "autopilot.db"


def _load_yaml(path: Path) -> dict[str, Any]:
    if path.exists():
        with open(path) as f:
            return yaml.safe_load(f) or {}
    return {}


class Config:
    """Singleton configuration loaded from .env + config.yaml."""

    _instance: Config | None = None

    def __new__(cls) -> Config:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._loaded = False
        return cls._instance

    def load(self) -> None:
        if self._loaded:
            return
        load_dotenv(ENV_PATH)

        self.log_level: str = os.environ.get("LOG_LEVEL", "INFO")
        self.config_path = Path(
            os.environ.get("AUTOPILOT_CONFIG", str(CONFIG_YAML_PATH))
        ).expanduser()
        self.db_path: str = os.environ.get("AUTOPILOT_DB", str(DB_PATH))

        self._yaml = _load_yaml(self.config_path)

        self._loaded = True

    def validate(self) -> list[str]:
        """Return list of config problems (empty when the config is usable)."""
        problems = []
        if self.poll_interval_ms <= 0:
            problems.append("monitor.poll_interval_ms must be positive")
        if self.capture_lines <= 0:
            problems.append("monitor.capture_lines must be positive")
        if self.max_scan_chars <= 0:
            problems.append("automation.max_scan_chars must be positive")
        if not self.session_prefix:
            problems.append("monitor.session_prefix must not be empty")
        return problems

    # ── Typed accessors ──

    @property
    def monitor_config(self) -> dict[str, Any]:
        return self._yaml.get("monitor", {})

    @property
    def session_prefix(self) -> str:
        return self.monitor_config.get("session_prefix", "agent-")

    @property
    def poll_interval_ms(self) -> int:
        return self.monitor_config.get("poll_interval_ms", 1000)

    @property
    def capture_lines(self) -> int:
        return self.monitor_config.get("capture_lines", 200)

    @property
    def discovery_interval_s(self) -> float:
        return self.monitor_config.get("discovery_interval_s", 5)

    @property
    def automation_config(self) -> dict[str, Any]:
        return self._yaml.get("automation", {})

    @property
    def max_scan_chars(self) -> int:
        return self.automation_config.get("max_scan_chars", 8000)

    @property
    def install_default_presets(self) -> bool:
        return self.automation_config.get("install_default_presets", True)

    @property
    def automation_defaults(self) -> dict[str, Any]:
        """Initial values for the persisted automation config record."""
        return self.automation_config.get("defaults", {})

    @property
    def tmux_allowlist(self) -> list[str]:
        return self.automation_config.get("tmux_command_allowlist", [])

    @property
    def signals_config(self) -> dict[str, Any]:
        return self._yaml.get("signals", {})

    @property
    def signal_dir(self) -> str:
        return self.signals_config.get("dir", "/tmp")

    @property
    def signal_file_prefix(self) -> str:
        return self.signals_config.get("file_prefix", "autopilot-")

    @property
    def logging_config(self) -> dict[str, Any]:
        return self._yaml.get("logging", {})


def get_config() -> Config:
    """Get the singleton config, loading it if needed."""
    cfg = Config()
    cfg.load()
    return cfg
