"""Tests for signal file emission."""

import json

import pytest

from autopilot.auto.signals import SignalEmitter, parse_signal


class TestParseSignal:
    def test_type_and_payload(self):
        assert parse_signal('working {"taskId":"x"}') == ("working", '{"taskId":"x"}')

    def test_type_only(self):
        assert parse_signal("idle") == ("idle", "")

    def test_empty(self):
        with pytest.raises(ValueError):
            parse_signal("")


class TestSignalEmitter:
    def test_path(self, tmp_path):
        emitter = SignalEmitter(tmp_path, "jat-")
        assert emitter.path_for("agent-a") == tmp_path / "jat-signal-tmux-agent-a.json"

    def test_emit_json_payload(self, tmp_path):
        path = SignalEmitter(tmp_path).emit("agent-a", "review", '{"ok": true}')
        record = json.loads(path.read_text())
        assert record["type"] == "review"
        assert record["data"] == {"ok": True}
        assert record["session"] == "agent-a"
        assert record["source"] == "automation"
        assert "timestamp" in record

    def test_emit_raw_payload(self, tmp_path):
        path = SignalEmitter(tmp_path).emit("agent-a", "note", "not json {")
        assert json.loads(path.read_text())["data"] == "not json {"

    def test_emit_overwrites(self, tmp_path):
        emitter = SignalEmitter(tmp_path)
        emitter.emit("agent-a", "working")
        path = emitter.emit("agent-a", "idle")
        assert json.loads(path.read_text())["type"] == "idle"
        assert len(list(tmp_path.iterdir())) == 1

    def test_creates_directory(self, tmp_path):
        emitter = SignalEmitter(tmp_path / "nested" / "dir")
        assert emitter.emit("s", "working").exists()
