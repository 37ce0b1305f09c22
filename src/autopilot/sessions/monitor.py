"""Output monitor — async polling loop feeding one tmux session into the engine."""

from __future__ import annotations

import asyncio
import time

from autopilot.config import get_config
from autopilot.sessions.detector import classify_state
from autopilot.sessions.output_buffer import OutputBuffer
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.sessions.monitor")

_STATE_TAIL_LINES = 15


class OutputMonitor:
    """Watch one tmux session and hand each tick of new output to the engine.

    Args:
        session_name: tmux session to watch.
        sessions: tmux collaborator providing ``capture``.
        engine: ``AutomationEngine`` receiving ``process_output`` calls.
        error_handler: Optional ``ErrorHandler`` for tick failures.
    """

    def __init__(self, session_name: str, sessions, engine, error_handler=None) -> None:
        self.session_name = session_name
        self.sessions = sessions
        self.engine = engine
        self.error_handler = error_handler

        self.output_buffer = OutputBuffer()
        self.state = "working"
        self._last_output_at = time.monotonic()
        self._primed = False
        self._stop_event = asyncio.Event()

        cfg = get_config()
        mon = cfg.monitor_config
        self._poll_default = cfg.poll_interval_ms / 1000
        self._poll_idle = mon.get("idle_poll_interval_ms", 3000) / 1000
        self._idle_threshold = mon.get("idle_threshold_s", 30)
        self._capture_lines = cfg.capture_lines

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self._last_output_at

    @property
    def poll_interval(self) -> float:
        if self.idle_seconds > 300:
            return self._poll_idle
        return self._poll_default

    async def start(self) -> None:
        """Run the polling loop until ``stop()`` is called.

        Tick failures are reported and the loop keeps going.
        """
        self._stop_event.clear()
        logger.info(f"Monitor started for session {self.session_name}")

        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                if self.error_handler:
                    await self.error_handler.handle(e, f"monitor:{self.session_name}")
                else:
                    logger.error(f"Monitor error for {self.session_name}: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop the monitoring loop (interrupts sleep immediately)."""
        self._stop_event.set()
        logger.info(f"Monitor stopped for session {self.session_name}")

    async def tick(self) -> list[asyncio.Task]:
        """Capture once, update the session state and evaluate new output.

        The first capture only sets the baseline. When there is no new output
        but the state changed (e.g. the session went idle), the screen tail is
        evaluated so state-scoped rules get a chance to fire.

        Returns:
            Firing tasks started by the engine.
        """
        raw = await asyncio.to_thread(
            self.sessions.capture, self.session_name, self._capture_lines
        )
        if not self._primed:
            self.output_buffer.prime(raw)
            self._primed = True
            return []

        new_lines = self.output_buffer.feed(raw)
        if new_lines:
            self._last_output_at = time.monotonic()

        previous = self.state
        self.state = classify_state(
            self.output_buffer.tail(_STATE_TAIL_LINES), self.idle_seconds, self._idle_threshold
        )
        if self.state != previous:
            logger.debug(f"[{self.session_name}] state {previous} -> {self.state}")

        if new_lines:
            text = "\n".join(new_lines)
        elif self.state != previous:
            text = self.output_buffer.tail(_STATE_TAIL_LINES)
        else:
            return []
        return self.engine.process_output(self.session_name, text, self.state)
