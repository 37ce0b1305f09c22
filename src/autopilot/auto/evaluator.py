"""Rule evaluator — decide which rules fire for one (session, output, state) tick."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from fnmatch import fnmatchcase

from autopilot.auto.matcher import match_pattern
from autopilot.db.models import AutomationRule
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.evaluator")


@dataclass
class RuleMatch:
    """A rule that matched, with the text its actions may interpolate.

    Attributes:
        rule: The matching rule.
        match: Text matched by the first non-negated pattern (``{match}``/``{$0}``).
        captures: ``$0..$n``; regex groups numbered across patterns in order.
    """

    rule: AutomationRule
    match: str = ""
    captures: list[str] = field(default_factory=list)


def match_rule(rule: AutomationRule, text: str) -> RuleMatch | None:
    """AND every pattern of ``rule`` against ``text``, stopping at the first miss.

    Returns:
        A ``RuleMatch`` if all patterns matched, else None.
    """
    if not rule.patterns:
        return None
    match_text: str | None = None
    groups: list[str] = []
    for pattern in rule.patterns:
        result = match_pattern(pattern, text)
        if not result.matched:
            return None
        if pattern.negate:
            continue
        if match_text is None:
            match_text = result.text
        if pattern.mode == "regex":
            groups.extend(result.groups[1:])
    match_text = match_text or ""
    return RuleMatch(rule=rule, match=match_text, captures=[match_text] + groups)


def applies_to_session(rule: AutomationRule, session_name: str) -> bool:
    """True if ``session_name`` matches one of the rule's session globs (or it has none)."""
    if not rule.session_filter:
        return True
    return any(fnmatchcase(session_name, glob) for glob in rule.session_filter)


class RuleEvaluator:
    """Produce the ordered list of rules that may fire now.

    Evaluation is side-effect free: the limiter is only asked, never charged.

    Args:
        store: Rule store providing ``config`` and ``enabled_rules()``.
        limiter: Rate limiter providing ``may_fire``.
    """

    def __init__(self, store, limiter) -> None:
        self.store = store
        self.limiter = limiter

    def evaluate(
        self,
        session_name: str,
        output_text: str,
        session_state: str,
        now: float | None = None,
    ) -> list[RuleMatch]:
        """Evaluate every applicable rule against one output blob.

        Args:
            session_name: Session the output came from.
            output_text: Text to match against.
            session_state: Current lifecycle state of the session.
            now: Evaluation time in seconds (defaults to ``time.time()``).

        Returns:
            Matching rules allowed by the limiter, by ascending priority.
            Ties keep store order.
        """
        config = self.store.config
        if not config.enabled:
            return []
        now = time.time() if now is None else now

        survivors: list[RuleMatch] = []
        for rule in self.store.enabled_rules():
            try:
                if not applies_to_session(rule, session_name):
                    continue
                if rule.session_states and session_state not in rule.session_states:
                    continue
                found = match_rule(rule, output_text)
                if found is None:
                    continue
                allowed = self.limiter.may_fire(
                    rule.id, rule.cooldown_seconds, rule.max_triggers_per_hour, now
                )
            except Exception as e:
                logger.warning(f"Skipping rule '{rule.name}' ({rule.id}): {e}")
                continue
            if not allowed:
                logger.debug(f"[{session_name}] rule '{rule.name}' matched but is rate limited")
                continue
            survivors.append(found)

        survivors.sort(key=lambda m: m.rule.priority)
        if config.debug_logging:
            logger.info(
                f"[{session_name}] state={session_state} "
                f"chars={len(output_text)} matched={[m.rule.name for m in survivors]}"
            )
        return survivors
