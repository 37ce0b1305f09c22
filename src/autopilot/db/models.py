"""Data models — dataclasses for rules, config and activity records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

PATTERN_MODES = ("regex", "contains", "exact", "startsWith", "endsWith")
ACTION_TYPES = ("send_text", "send_keys", "tmux_command", "signal", "notify_only")
RULE_CATEGORIES = ("recovery", "prompt", "stall", "notification", "custom")


def new_id(prefix: str) -> str:
    """Generate a short unique identifier, e.g. ``'rule-3f9a0c1b2d4e'``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _now_iso() -> str:
    return datetime.now().isoformat()


def _pick(data: dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    """Read a key that may be spelled camelCase (wire) or snake_case."""
    if camel in data:
        return data[camel]
    return data.get(snake, default)


def _flag(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


@dataclass
class Pattern:
    """One text-matching condition of a rule.

    Attributes:
        id: Unique pattern identifier.
        mode: ``'regex'``, ``'contains'``, ``'exact'``, ``'startsWith'`` or ``'endsWith'``.
        value: Literal text or regular expression.
        case_sensitive: Match case exactly (default False).
        negate: Invert the result of the match (default False).
    """

    value: str = ""
    mode: str = "contains"
    case_sensitive: bool = False
    negate: bool = False
    id: str = field(default_factory=lambda: new_id("pat"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mode": self.mode,
            "value": self.value,
            "caseSensitive": self.case_sensitive,
            "negate": self.negate,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pattern:
        return cls(
            id=data.get("id") or new_id("pat"),
            mode=data.get("mode", "contains"),
            value=_pick(data, "value", "pattern", ""),
            case_sensitive=_pick(data, "caseSensitive", "case_sensitive", False),
            negate=data.get("negate", False),
        )


@dataclass
class Action:
    """One automated response of a rule.

    Attributes:
        id: Unique action identifier.
        type: ``'send_text'``, ``'send_keys'``, ``'tmux_command'``, ``'signal'``
            or ``'notify_only'``.
        value: Template string interpolated before execution.
        delay_ms: Milliseconds to wait before acting (default 0).
    """

    type: str = "notify_only"
    value: str = ""
    delay_ms: int = 0
    id: str = field(default_factory=lambda: new_id("act"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "value": self.value,
            "delayMs": self.delay_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        return cls(
            id=data.get("id") or new_id("act"),
            type=data.get("type", "notify_only"),
            value=_pick(data, "value", "payload", ""),
            delay_ms=int(_pick(data, "delayMs", "delay_ms", 0) or 0),
        )


@dataclass
class AutomationRule:
    """A named unit mapping AND-combined patterns to an ordered action list.

    Attributes:
        id: Unique rule identifier.
        name: Human-readable rule name.
        description: Optional free-text description.
        enabled: Whether the rule takes part in evaluation.
        category: ``'recovery'``, ``'prompt'``, ``'stall'``, ``'notification'``
            or ``'custom'``.
        patterns: Conditions that must all match (declaration order).
        actions: Responses executed in declaration order.
        cooldown_seconds: Minimum seconds between two firings.
        max_triggers_per_hour: Sliding hourly cap (None or 0 = unlimited).
        session_states: States the rule applies to (empty = all states).
        session_filter: Glob patterns on the session name, e.g. ``agent-web*``
            (empty = every monitored session).
        priority: Lower fires first among simultaneous matches.
        preset_id: Preset this rule was instantiated from, if any.
        created_at: ISO timestamp of creation.
        updated_at: ISO timestamp of the last update.
    """

    name: str = ""
    patterns: list[Pattern] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    description: str = ""
    enabled: bool = True
    category: str = "custom"
    cooldown_seconds: float = 30
    max_triggers_per_hour: int | None = None
    session_states: list[str] = field(default_factory=list)
    session_filter: list[str] = field(default_factory=list)
    priority: int = 100
    preset_id: str | None = None
    id: str = field(default_factory=lambda: new_id("rule"))
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "category": self.category,
            "patterns": [p.to_dict() for p in self.patterns],
            "actions": [a.to_dict() for a in self.actions],
            "cooldownSeconds": self.cooldown_seconds,
            "maxTriggersPerHour": self.max_triggers_per_hour,
            "sessionStates": list(self.session_states),
            "sessionFilter": list(self.session_filter),
            "priority": self.priority,
            "presetId": self.preset_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutomationRule:
        now = _now_iso()
        return cls(
            id=data.get("id") or new_id("rule"),
            name=data.get("name", ""),
            description=data.get("description") or "",
            enabled=data.get("enabled", True),
            category=data.get("category") or "custom",
            patterns=[Pattern.from_dict(p) for p in data.get("patterns", [])],
            actions=[Action.from_dict(a) for a in data.get("actions", [])],
            cooldown_seconds=_pick(data, "cooldownSeconds", "cooldown_seconds", 30),
            max_triggers_per_hour=_pick(
                data, "maxTriggersPerHour", "max_triggers_per_hour"
            ),
            session_states=_pick(data, "sessionStates", "session_states") or [],
            session_filter=_pick(data, "sessionFilter", "session_filter") or [],
            priority=int(data.get("priority", 100)),
            preset_id=_pick(data, "presetId", "preset_id"),
            created_at=_pick(data, "createdAt", "created_at") or now,
            updated_at=_pick(data, "updatedAt", "updated_at") or now,
        )


@dataclass
class AutomationConfig:
    """Process-wide automation settings.

    Attributes:
        enabled: Master switch; when off no rule is evaluated.
        max_actions_per_minute: Global per-minute firing cap (0 = unlimited).
        global_cooldown_seconds: Minimum seconds between any two firings (0 = off).
        default_cooldown_seconds: Cooldown given to new rules that omit one.
        max_activity_events: Capacity of the activity ring buffer.
        debug_logging: Log every evaluation at INFO level.
    """

    enabled: bool = True
    max_actions_per_minute: int = 30
    global_cooldown_seconds: float = 0.0
    default_cooldown_seconds: float = 30
    max_activity_events: int = 100
    debug_logging: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "maxActionsPerMinute": self.max_actions_per_minute,
            "globalCooldownSeconds": self.global_cooldown_seconds,
            "defaultCooldownSeconds": self.default_cooldown_seconds,
            "maxActivityEvents": self.max_activity_events,
            "debugLogging": self.debug_logging,
        }

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], base: AutomationConfig | None = None
    ) -> AutomationConfig:
        """Build a config from ``data``, filling missing keys from ``base``."""
        base = base or cls()
        return cls(
            enabled=_flag(data.get("enabled", base.enabled), "enabled"),
            max_actions_per_minute=int(
                _pick(data, "maxActionsPerMinute", "max_actions_per_minute",
                      base.max_actions_per_minute)
            ),
            global_cooldown_seconds=float(
                _pick(data, "globalCooldownSeconds", "global_cooldown_seconds",
                      base.global_cooldown_seconds)
            ),
            default_cooldown_seconds=float(
                _pick(data, "defaultCooldownSeconds", "default_cooldown_seconds",
                      base.default_cooldown_seconds)
            ),
            max_activity_events=int(
                _pick(data, "maxActivityEvents", "max_activity_events",
                      base.max_activity_events)
            ),
            debug_logging=_flag(
                _pick(data, "debugLogging", "debug_logging", base.debug_logging),
                "debugLogging",
            ),
        )


@dataclass
class ActionOutcome:
    """Result of executing one action."""

    action_id: str
    type: str
    value: str = ""
    success: bool = True
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "actionId": self.action_id,
            "type": self.type,
            "value": self.value,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionOutcome:
        return cls(
            action_id=_pick(data, "actionId", "action_id", ""),
            type=data.get("type", ""),
            value=data.get("value", ""),
            success=bool(data.get("success", False)),
            error=data.get("error"),
        )


@dataclass
class ActivityEvent:
    """Audit record of one rule firing.

    Attributes:
        rule_id: Rule that fired.
        rule_name: Rule name at firing time.
        session_name: tmux session the rule fired against.
        agent_name: Session name with the monitored prefix removed.
        matched_text: Redacted excerpt of the text that matched.
        outcomes: One entry per executed action, in order.
        id: Unique event identifier.
        timestamp: ISO timestamp of the firing.
    """

    rule_id: str
    rule_name: str
    session_name: str
    agent_name: str = ""
    matched_text: str = ""
    outcomes: list[ActionOutcome] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("activity"))
    timestamp: str = field(default_factory=_now_iso)

    @property
    def success(self) -> bool:
        return all(o.success for o in self.outcomes)

    @property
    def error(self) -> str | None:
        for o in self.outcomes:
            if not o.success:
                return o.error
        return None
