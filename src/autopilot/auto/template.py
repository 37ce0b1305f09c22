"""Template interpolation for action values.

Available variables:

- ``{session}`` — the tmux session name (e.g. ``agent-FairBay``)
- ``{agent}`` — the session name without the monitored prefix (``FairBay``)
- ``{timestamp}`` — ISO-8601 UTC time at which the rule fired
- ``{match}`` / ``{$0}`` — the full matched text
- ``{$1}``, ``{$2}``, ... — regex capture groups, numbered sequentially across
  the rule's regex patterns in declaration order

Unknown names and out-of-range groups resolve to the empty string. Braces that
do not form a token (JSON bodies, for example) are left alone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

_TOKEN_RE = re.compile(r"\{(\$\d+|[A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class TemplateContext:
    session: str
    agent: str
    timestamp: str
    match: str = ""
    captures: list[str] = field(default_factory=list)

    def lookup(self, name: str) -> str:
        if name.startswith("$"):
            index = int(name[1:])
            if index == 0:
                return self.match
            return self.captures[index] if index < len(self.captures) else ""
        if name in ("session", "agent", "timestamp", "match"):
            return getattr(self, name)
        return ""


def agent_name(session_name: str, prefix: str = "") -> str:
    """Strip the monitored-session prefix, e.g. ``agent-FairBay`` -> ``FairBay``."""
    if prefix and session_name.startswith(prefix) and len(session_name) > len(prefix):
        return session_name[len(prefix) :]
    return session_name


def build_context(
    session_name: str,
    match: str = "",
    captures: list[str] | None = None,
    prefix: str = "",
    now: datetime | None = None,
) -> TemplateContext:
    """Create the interpolation context for one firing.

    Args:
        session_name: Target tmux session.
        match: Full matched text (``$0``).
        captures: ``$0..$n``; ``captures[0]`` should equal ``match``.
        prefix: Monitored-session prefix removed to derive ``{agent}``.
        now: Firing time (defaults to the current UTC time).
    """
    now = now or datetime.now(timezone.utc)
    return TemplateContext(
        session=session_name,
        agent=agent_name(session_name, prefix),
        timestamp=now.isoformat(),
        match=match,
        captures=list(captures) if captures else [match],
    )


def interpolate(value: str, context: TemplateContext) -> str:
    """Substitute ``{name}`` and ``{$N}`` tokens in ``value``.

    Pure string substitution: nothing is escaped.
    """
    return _TOKEN_RE.sub(lambda m: context.lookup(m.group(1)), value)
