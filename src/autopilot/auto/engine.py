"""Automation engine — evaluate a tick of output, spend rate-limit slots, fire actions."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

from autopilot.auto.evaluator import RuleEvaluator, RuleMatch
from autopilot.auto.template import build_context, interpolate
from autopilot.db.models import ActivityEvent
from autopilot.security.redactor import excerpt
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.engine")


class AutomationEngine:
    """Glue between the evaluator, the limiter, the executor and the activity log.

    Each acquired firing runs as its own task, so a rule waiting on an action
    delay never holds up other rules or other sessions.

    Args:
        store: Rule store.
        limiter: Shared rate limiter.
        executor: Action executor.
        activity: Activity log receiving one event per firing.
        agent_prefix: Session-name prefix stripped to build ``{agent}``.
        max_scan_chars: Only the trailing part of the output this long is
            matched (0 disables the cap).
    """

    def __init__(
        self,
        store,
        limiter,
        executor,
        activity,
        agent_prefix: str = "",
        max_scan_chars: int = 8000,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.executor = executor
        self.activity = activity
        self.agent_prefix = agent_prefix
        self.max_scan_chars = max_scan_chars
        self.evaluator = RuleEvaluator(store, limiter)
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _scan_window(self, output: str) -> str:
        if self.max_scan_chars and len(output) > self.max_scan_chars:
            return output[-self.max_scan_chars :]
        return output

    def process_output(
        self,
        session_name: str,
        output: str,
        session_state: str,
        now: float | None = None,
    ) -> list[asyncio.Task]:
        """Evaluate one tick and start a task for every rule allowed to fire.

        Must be called from a running event loop.

        Args:
            session_name: Session the output came from.
            output: New output text for this tick.
            session_state: Current session state.
            now: Tick time in seconds (defaults to ``time.time()``).

        Returns:
            The firing tasks started, in priority order.
        """
        now = time.time() if now is None else now
        text = self._scan_window(output)
        if not text:
            return []

        tasks: list[asyncio.Task] = []
        for found in self.evaluator.evaluate(session_name, text, session_state, now):
            rule = found.rule
            # Another session may have spent the slot since evaluation
            if not self.limiter.try_acquire(
                rule.id, rule.cooldown_seconds, rule.max_triggers_per_hour, now
            ):
                continue
            logger.info(f"[{session_name}] rule '{rule.name}' fired")
            fired_at = datetime.fromtimestamp(now, timezone.utc)
            task = asyncio.create_task(
                self._fire(session_name, found, fired_at), name=f"fire-{rule.id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._on_done)
            tasks.append(task)
        return tasks

    async def _fire(
        self, session_name: str, found: RuleMatch, fired_at: datetime
    ) -> ActivityEvent:
        """Run a rule's actions in order and record one activity event."""
        rule = found.rule
        context = build_context(
            session_name,
            match=found.match,
            captures=found.captures,
            prefix=self.agent_prefix,
            now=fired_at,
        )
        outcomes = []
        for action in rule.actions:
            if action.delay_ms > 0:
                await asyncio.sleep(action.delay_ms / 1000)
            value = interpolate(action.value, context)
            outcomes.append(await self.executor.execute(action, session_name, value))

        event = ActivityEvent(
            rule_id=rule.id,
            rule_name=rule.name,
            session_name=session_name,
            agent_name=context.agent,
            matched_text=excerpt(found.match),
            outcomes=outcomes,
            timestamp=context.timestamp,
        )
        await self.activity.append(event)
        if not event.success:
            logger.warning(f"[{session_name}] rule '{rule.name}' had failures: {event.error}")
        return event

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Firing task {task.get_name()} crashed: {exc!r}")

    def dry_run(
        self,
        session_name: str,
        output: str,
        session_state: str,
        now: float | None = None,
    ) -> list[RuleMatch]:
        """Evaluate without firing or spending rate-limit slots."""
        return self.evaluator.evaluate(
            session_name, self._scan_window(output), session_state, now
        )

    async def drain(self, timeout: float = 10.0) -> int:
        """Wait for in-flight firings, cancelling those still running after ``timeout``.

        Returns:
            Number of firings that had to be cancelled.
        """
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} in-flight firings on shutdown")
        return len(pending)
