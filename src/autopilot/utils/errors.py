"""Error taxonomy + global error handler for the monitor loop."""

from __future__ import annotations

import asyncio

from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.utils.errors")


class AutopilotError(Exception):
    """Base class for errors raised by autopilot."""


class RuleValidationError(AutopilotError, ValueError):
    """A rule was rejected at save time.

    Attributes:
        problems: Human-readable list of everything wrong with the rule.
    """

    def __init__(self, problems: list[str], rule_name: str = "") -> None:
        self.problems = list(problems)
        self.rule_name = rule_name
        prefix = f"Invalid rule '{rule_name}'" if rule_name else "Invalid rule"
        super().__init__(f"{prefix}: {'; '.join(self.problems)}")


class RuleImportError(AutopilotError):
    """An import document could not be parsed or contained invalid rules."""


class SessionActionError(AutopilotError):
    """A side effect against a tmux session failed (session gone, tmux error)."""

    def __init__(self, session_name: str, message: str) -> None:
        self.session_name = session_name
        super().__init__(f"[{session_name}] {message}")


class ErrorHandler:
    """Global error handler — log, count, and escalate repeated errors."""

    def __init__(self, on_escalate=None, threshold: int = 5) -> None:
        self.on_escalate = on_escalate  # async callback(message, context)
        self.threshold = threshold
        self.error_counts: dict[str, int] = {}
        self._reset_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start periodic error count reset."""
        self._reset_task = asyncio.create_task(self._periodic_reset())

    async def stop(self) -> None:
        if self._reset_task:
            self._reset_task.cancel()

    async def handle(self, error: Exception, context: str) -> None:
        """Log and count an error; escalate when one type keeps repeating."""
        error_type = type(error).__name__
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        logger.error(f"[{context}] {error_type}: {error}")

        if self.error_counts[error_type] == self.threshold:
            await self._escalate(error_type, context)

    async def _escalate(self, error_type: str, context: str) -> None:
        message = (
            f"Repeated error in {context}: {error_type} "
            f"({self.error_counts[error_type]} times)"
        )
        logger.critical(message)
        if self.on_escalate:
            try:
                await self.on_escalate(message, context)
            except Exception as e:
                logger.critical(f"Escalation callback failed for {error_type}: {e}")

    async def _periodic_reset(self) -> None:
        """Reset error counts every 5 minutes."""
        while True:
            await asyncio.sleep(300)
            self.error_counts.clear()
