"""Signal emitter — publish session state signals as JSON files for other tools."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.signals")


def parse_signal(value: str) -> tuple[str, str]:
    """Split an interpolated signal action value into ``(type, payload)``.

    ``'working {"taskId":"jat-xyz"}'`` -> ``('working', '{"taskId":"jat-xyz"}')``.

    Raises:
        ValueError: If no signal type is given.
    """
    parts = value.strip().split(None, 1)
    if not parts:
        raise ValueError("signal action has no signal type")
    return parts[0], parts[1] if len(parts) > 1 else ""


class SignalEmitter:
    """Write the latest signal of each session to ``<dir>/<prefix>signal-tmux-<session>.json``.

    Each write replaces the previous signal of that session.
    """

    def __init__(self, signal_dir: str | Path = "/tmp", file_prefix: str = "autopilot-") -> None:
        self.signal_dir = Path(signal_dir)
        self.file_prefix = file_prefix

    def path_for(self, session_name: str) -> Path:
        return self.signal_dir / f"{self.file_prefix}signal-tmux-{session_name}.json"

    def build(self, session_name: str, signal_type: str, payload: str) -> dict[str, Any]:
        try:
            data: Any = json.loads(payload) if payload else {}
        except ValueError:
            data = payload
        return {
            "type": signal_type,
            "data": data,
            "session": session_name,
            "source": "automation",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def emit(self, session_name: str, signal_type: str, payload: str = "") -> Path:
        """Write one signal file.

        Args:
            session_name: Session the signal is about.
            signal_type: Signal type, e.g. ``'working'`` or ``'review'``.
            payload: JSON text; kept as a raw string when it is not valid JSON.

        Returns:
            Path of the written file.

        Raises:
            OSError: If the file cannot be written.
        """
        record = self.build(session_name, signal_type, payload)
        path = self.path_for(session_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(record), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug(f"[{session_name}] signal {signal_type} -> {path}")
        return path
