"""Secret redaction for text that ends up in the activity log."""

from __future__ import annotations

import re

EXCERPT_LIMIT = 500

REDACTION_PATTERNS: list[tuple[str, str]] = [
    (r"sk-ant-[a-zA-Z0-9\-_]{10,}", "[REDACTED:ANTHROPIC_KEY]"),
    (r"sk-[a-zA-Z0-9]{20,}", "[REDACTED:API_KEY]"),
    (r"gh[pousr]_[a-zA-Z0-9]{36}", "[REDACTED:GITHUB_TOKEN]"),
    (r"npm_[a-zA-Z0-9]{36}", "[REDACTED:NPM_TOKEN]"),
    (r"AKIA[0-9A-Z]{16}", "[REDACTED:AWS_KEY]"),
    (r"xox[bpoas]-[a-zA-Z0-9\-]+", "[REDACTED:SLACK_TOKEN]"),
    (r"-----BEGIN [A-Z ]*PRIVATE KEY-----", "[REDACTED:PRIVATE_KEY]"),
    (r"Bearer\s+[a-zA-Z0-9\-._~+/]+=*", "Bearer [REDACTED]"),
    # KEY=value style assignments
    (r"(?i)\b(password|passwd|secret|token|api_key|apikey)\s*[=:]\s*\S+", r"\1=[REDACTED]"),
]

_compiled = [(re.compile(p, re.MULTILINE), r) for p, r in REDACTION_PATTERNS]


def redact_sensitive(text: str) -> str:
    """Replace API keys, tokens and passwords with ``[REDACTED...]`` placeholders.

    Args:
        text: Terminal output that may contain secrets.

    Returns:
        The text with every known secret shape replaced.
    """
    for pattern, replacement in _compiled:
        text = pattern.sub(replacement, text)
    return text


def excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Redacted excerpt of matched text, cut to ``limit`` characters."""
    text = redact_sensitive(text)
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"
