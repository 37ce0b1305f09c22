"""Tests for OutputMonitor — async polling loop for one tmux session."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autopilot.sessions.monitor import OutputMonitor


def _make_monitor(captures=None, monitor_cfg=None, error_handler=None):
    """Build an OutputMonitor with mocked tmux, engine and config."""
    mock_config = MagicMock()
    mock_config.monitor_config = monitor_cfg or {
        "idle_poll_interval_ms": 2000,
        "idle_threshold_s": 30,
    }
    mock_config.poll_interval_ms = 500
    mock_config.capture_lines = 100

    sessions = MagicMock()
    if captures is not None:
        sessions.capture.side_effect = list(captures)
    engine = MagicMock()
    engine.process_output.return_value = []

    with patch("autopilot.sessions.monitor.get_config", return_value=mock_config):
        monitor = OutputMonitor("agent-a", sessions, engine, error_handler=error_handler)
    return monitor


class TestPollInterval:
    def test_default_interval(self):
        monitor = _make_monitor()
        assert monitor.poll_interval == 0.5

    def test_idle_interval_after_five_minutes(self):
        monitor = _make_monitor()
        monitor._last_output_at = time.monotonic() - 400
        assert monitor.poll_interval == 2.0


class TestTick:
    async def test_first_capture_only_primes(self):
        monitor = _make_monitor(captures=["Continue? [y/n]"])
        assert await monitor.tick() == []
        monitor.engine.process_output.assert_not_called()
        monitor.sessions.capture.assert_called_once_with("agent-a", 100)

    async def test_new_lines_go_to_engine(self):
        monitor = _make_monitor(captures=["$ build", "$ build\nCompiling\nnpm ERR! boom"])
        await monitor.tick()
        await monitor.tick()
        monitor.engine.process_output.assert_called_once_with(
            "agent-a", "Compiling\nnpm ERR! boom", "error"
        )
        assert monitor.state == "error"

    async def test_no_change_no_evaluation(self):
        monitor = _make_monitor(captures=["same", "same", "same"])
        for _ in range(3):
            await monitor.tick()
        monitor.engine.process_output.assert_not_called()

    async def test_state_change_evaluates_screen_tail(self):
        monitor = _make_monitor(captures=["working on it", "working on it", "working on it"])
        await monitor.tick()
        await monitor.tick()
        monitor._last_output_at = time.monotonic() - 60
        await monitor.tick()
        monitor.engine.process_output.assert_called_once_with(
            "agent-a", "working on it", "idle"
        )

    async def test_returns_engine_tasks(self):
        monitor = _make_monitor(captures=["a", "a\nb"])
        sentinel = [MagicMock()]
        monitor.engine.process_output.return_value = sentinel
        await monitor.tick()
        assert await monitor.tick() is sentinel


class TestLoop:
    async def test_start_and_stop(self):
        monitor = _make_monitor()
        monitor.sessions.capture.return_value = "idle screen"
        task = asyncio.create_task(monitor.start())
        await asyncio.sleep(0.05)
        await monitor.stop()
        await asyncio.wait_for(task, timeout=1)
        assert monitor.sessions.capture.called

    async def test_tick_error_goes_to_handler(self):
        handler = MagicMock()
        handler.handle = AsyncMock()
        monitor = _make_monitor(error_handler=handler)
        monitor.sessions.capture.side_effect = RuntimeError("tmux gone")
        task = asyncio.create_task(monitor.start())
        await asyncio.sleep(0.05)
        await monitor.stop()
        await asyncio.wait_for(task, timeout=1)
        error, context = handler.handle.call_args[0]
        assert isinstance(error, RuntimeError)
        assert context == "monitor:agent-a"

    async def test_tick_error_without_handler_keeps_running(self):
        monitor = _make_monitor()
        monitor.sessions.capture.side_effect = RuntimeError("tmux gone")
        task = asyncio.create_task(monitor.start())
        await asyncio.sleep(0.05)
        await monitor.stop()
        await asyncio.wait_for(task, timeout=1)
        assert task.done()
        assert not task.cancelled()


@pytest.mark.parametrize("idle,expected", [(0, "working"), (45, "idle")])
async def test_idle_threshold_from_config(idle, expected):
    monitor = _make_monitor(captures=["x", "x", "x"])
    await monitor.tick()
    monitor._last_output_at = time.monotonic() - idle
    await monitor.tick()
    assert monitor.state == expected
