"""Session state detection — classify the tail of a pane into a lifecycle state."""

from __future__ import annotations

import re

SESSION_STATES = ("needs_input", "rate_limited", "error", "completed", "working", "idle")

INPUT_PROMPT_PATTERNS = [
    r"Do you want to (?:proceed|allow|make this edit|create)",
    r"Would you like to (?:continue|retry|proceed)",
    r"\[y/n(?:/a)?\]|\(y/n\)|\[Y/n\]|\[y/N\]",
    r"\(y\)es\s*/\s*\(n\)o",
    r"Press Enter to continue",
    r"(?:Choose|Select|Pick)\s+(?:one|an option|from)",
    r"❯\s*\d+\.\s",
    r"(?:Enter|Type|Provide|Specify)\s+(?:a|the|your)\s+\w+\s*:\s*$",
]

RATE_LIMIT_PATTERNS = [
    r"(?i)rate[\s_]*limit(?:ed)?",
    r"(?i)usage\s*limit\s*(?:reached|exceeded|hit)",
    r"(?i)too\s*many\s*requests",
    r"(?i)\b429\b",
    r"(?i)quota\s*(?:exceeded|reached)",
    r"(?i)limit\s+will\s+reset",
]

ERROR_PATTERNS = [
    r"(?i)(?:fatal|panic)\s*(?:error|:)",
    r"(?i)overloaded_error|\b529\b",
    r"(?i)\b(?:ECONNRESET|ETIMEDOUT|ECONNREFUSED)\b",
    r"Traceback \(most recent call last\)",
    r"(?i)unhandled\s+(?:promise\s+)?rejection",
    r"(?i)api\s+(?:error|unavailable)",
    r"npm\s+ERR!",
]

COMPLETION_PATTERNS = [
    r"(?i)(?:task|job|build|deployment?)\s+(?:complete[d]?|finished|done)",
    r"(?i)task closed successfully",
    r"(?i)all\s+(?:\d+\s+)?tests?\s+pass(?:ed)?",
    r"✓ Task|✅",
]

_COMPILED: dict[str, list[re.Pattern]] = {}


def _compile(name: str, patterns: list[str]) -> list[re.Pattern]:
    if name not in _COMPILED:
        _COMPILED[name] = [re.compile(p, re.MULTILINE) for p in patterns]
    return _COMPILED[name]


def _match_any(text: str, name: str, patterns: list[str]) -> bool:
    return any(c.search(text) for c in _compile(name, patterns))


def classify_state(text: str, idle_seconds: float = 0.0, idle_threshold: float = 30.0) -> str:
    """Derive the session state from the tail of its screen.

    Checks run in priority order: ``needs_input``, ``rate_limited``,
    ``error``, ``completed``; otherwise the session is ``working`` until it
    has produced no output for ``idle_threshold`` seconds, then ``idle``.

    Args:
        text: Last lines of the pane (ANSI already stripped).
        idle_seconds: Seconds since the pane last produced new output.
        idle_threshold: Silence after which a session counts as idle.

    Returns:
        One of ``SESSION_STATES``.
    """
    if _match_any(text, "input", INPUT_PROMPT_PATTERNS):
        return "needs_input"
    if _match_any(text, "rate", RATE_LIMIT_PATTERNS):
        return "rate_limited"
    if _match_any(text, "error", ERROR_PATTERNS):
        return "error"
    if _match_any(text, "done", COMPLETION_PATTERNS):
        return "completed"
    if idle_seconds >= idle_threshold:
        return "idle"
    return "working"
