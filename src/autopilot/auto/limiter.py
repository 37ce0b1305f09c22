"""Two-tier rate limiter — per-rule cooldown/hourly cap + global throttle."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field

from autopilot.db.models import AutomationConfig
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.limiter")

HOUR_WINDOW_S = 3600.0
MINUTE_WINDOW_S = 60.0


@dataclass
class RuleTriggerState:
    """Firing history of one rule (created lazily on first commit)."""

    last_triggered_at: float
    window: deque[float] = field(default_factory=deque)


@dataclass
class GlobalThrottleState:
    last_action_at: float | None = None
    window: deque[float] = field(default_factory=deque)


def _prune(window: deque[float], now: float, span: float) -> None:
    while window and now - window[0] >= span:
        window.popleft()


class RateLimiter:
    """Answer "may this rule fire now?" and record firings.

    All state sits behind one lock so the caps hold across every monitored
    session, not per session. ``may_fire`` never mutates; ``try_acquire`` is the
    atomic check-and-commit used when a firing is actually going to happen.
    """

    def __init__(
        self,
        max_actions_per_minute: int = 30,
        global_cooldown_seconds: float = 0.0,
    ) -> None:
        self.max_actions_per_minute = max_actions_per_minute
        self.global_cooldown_seconds = global_cooldown_seconds
        self._rules: dict[str, RuleTriggerState] = {}
        self._global = GlobalThrottleState()
        self._lock = threading.Lock()

    def configure(self, config: AutomationConfig) -> None:
        """Apply the global limits from the automation config."""
        with self._lock:
            self.max_actions_per_minute = config.max_actions_per_minute
            self.global_cooldown_seconds = config.global_cooldown_seconds

    def may_fire(
        self,
        rule_id: str,
        cooldown_seconds: float,
        max_triggers_per_hour: int | None,
        now: float,
    ) -> bool:
        """Check every gate without recording anything.

        Gates, in order: rule cooldown, rule hourly cap, global cooldown,
        global per-minute cap.
        """
        with self._lock:
            return self._check(rule_id, cooldown_seconds, max_triggers_per_hour, now) is None

    def commit(self, rule_id: str, now: float) -> None:
        """Record a firing of ``rule_id`` at ``now`` in both tiers."""
        with self._lock:
            self._commit(rule_id, now)

    def try_acquire(
        self,
        rule_id: str,
        cooldown_seconds: float,
        max_triggers_per_hour: int | None,
        now: float,
    ) -> bool:
        """Atomically check the gates and commit on success.

        Returns:
            True if the firing slot was taken.
        """
        with self._lock:
            reason = self._check(rule_id, cooldown_seconds, max_triggers_per_hour, now)
            if reason is not None:
                logger.debug(f"Rule {rule_id} denied: {reason}")
                return False
            self._commit(rule_id, now)
            return True

    def forget(self, rule_id: str) -> None:
        """Drop the trigger history of a deleted rule."""
        with self._lock:
            self._rules.pop(rule_id, None)

    def trigger_count(self, rule_id: str, now: float) -> int:
        """Number of firings of ``rule_id`` within the trailing hour."""
        with self._lock:
            state = self._rules.get(rule_id)
            if state is None:
                return 0
            return sum(1 for t in state.window if now - t < HOUR_WINDOW_S)

    def actions_last_minute(self, now: float) -> int:
        with self._lock:
            return sum(1 for t in self._global.window if now - t < MINUTE_WINDOW_S)

    def reset(self) -> None:
        with self._lock:
            self._rules.clear()
            self._global = GlobalThrottleState()

    def _check(
        self,
        rule_id: str,
        cooldown_seconds: float,
        max_triggers_per_hour: int | None,
        now: float,
    ) -> str | None:
        state = self._rules.get(rule_id)
        if state is not None:
            if now - state.last_triggered_at < cooldown_seconds:
                return "rule cooldown"
            if max_triggers_per_hour:
                recent = sum(1 for t in state.window if now - t < HOUR_WINDOW_S)
                if recent >= max_triggers_per_hour:
                    return "hourly cap"

        g = self._global
        if (
            self.global_cooldown_seconds
            and g.last_action_at is not None
            and now - g.last_action_at < self.global_cooldown_seconds
        ):
            return "global cooldown"
        if self.max_actions_per_minute:
            recent = sum(1 for t in g.window if now - t < MINUTE_WINDOW_S)
            if recent >= self.max_actions_per_minute:
                return "global per-minute cap"
        return None

    def _commit(self, rule_id: str, now: float) -> None:
        state = self._rules.get(rule_id)
        if state is None:
            state = RuleTriggerState(last_triggered_at=now)
            self._rules[rule_id] = state
        state.last_triggered_at = now
        state.window.append(now)
        _prune(state.window, now, HOUR_WINDOW_S)

        self._global.last_action_at = now
        self._global.window.append(now)
        _prune(self._global.window, now, MINUTE_WINDOW_S)
