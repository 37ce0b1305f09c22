"""Built-in rule presets and preset packs.

Presets are rule templates; installing one clones it into a real rule with
fresh ids. Packs bundle related presets so they can be installed together.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from autopilot.db.models import AutomationRule, new_id


@dataclass(frozen=True)
class Preset:
    id: str
    name: str
    description: str
    category: str
    rule: dict[str, Any]

    @property
    def enabled(self) -> bool:
        return bool(self.rule.get("enabled", True))


@dataclass(frozen=True)
class PresetPack:
    id: str
    name: str
    description: str
    category: str
    presets: tuple[Preset, ...]
    tags: tuple[str, ...] = field(default_factory=tuple)
    enabled_by_default: bool = True


def _regex(value: str, case_sensitive: bool = False) -> dict[str, Any]:
    return {"mode": "regex", "value": value, "caseSensitive": case_sensitive}


def _act(type_: str, value: str, delay_ms: int = 0) -> dict[str, Any]:
    return {"type": type_, "value": value, "delayMs": delay_ms}


def _preset(
    preset_id: str,
    name: str,
    description: str,
    category: str,
    patterns: list[dict[str, Any]],
    actions: list[dict[str, Any]],
    *,
    enabled: bool = True,
    cooldown: float = 30,
    per_hour: int | None = None,
    priority: int = 100,
    states: list[str] | None = None,
) -> Preset:
    return Preset(
        id=preset_id,
        name=name,
        description=description,
        category=category,
        rule={
            "name": name,
            "description": description,
            "enabled": enabled,
            "category": category,
            "patterns": patterns,
            "actions": actions,
            "cooldownSeconds": cooldown,
            "maxTriggersPerHour": per_hour,
            "sessionStates": states or [],
            "priority": priority,
        },
    )


# ── Recovery ──

API_OVERLOADED = _preset(
    "preset-api-overloaded",
    "API Overloaded Recovery",
    "Retry when the API is overloaded (529). Waits 5 seconds before pressing Enter.",
    "recovery",
    [_regex(r"overloaded_error|529|API is temporarily overloaded")],
    [
        _act("notify_only", "API overloaded on {agent}, retrying in 5s"),
        _act("send_keys", "Enter", 5000),
    ],
    cooldown=30,
    per_hour=10,
    priority=10,
)

RATE_LIMIT = _preset(
    "preset-rate-limit",
    "Rate Limit Recovery",
    "Wait 60 seconds and retry when rate limited (429).",
    "recovery",
    [_regex(r"rate_limit|429|Rate limit exceeded|too many requests")],
    [
        _act("notify_only", "Rate limited on {agent}, retrying in 60s"),
        _act("send_keys", "Enter", 60000),
    ],
    cooldown=120,
    per_hour=5,
    priority=10,
)

NETWORK_ERROR = _preset(
    "preset-network-error",
    "Network Error Recovery",
    "Retry on ECONNRESET, ETIMEDOUT and similar connectivity errors.",
    "recovery",
    [_regex(r"ECONNRESET|ETIMEDOUT|ECONNREFUSED|network error|socket hang up")],
    [
        _act("notify_only", "Network error on {agent}, retrying in 3s"),
        _act("send_keys", "Enter", 3000),
    ],
    cooldown=15,
    per_hour=20,
    priority=20,
)

BYPASS_ACCEPT = _preset(
    "preset-bypass-accept",
    "Bypass Permissions Auto-Accept",
    "Accept the bypass-permissions confirmation shown on first start.",
    "recovery",
    [_regex(r"running in Bypass Permissions mode|Yes, I accept|Do you wish to proceed\?")],
    [
        _act("notify_only", "Bypass permissions prompt on {agent}, accepting"),
        _act("send_keys", "Enter", 1000),
    ],
    cooldown=60,
    per_hour=2,
    priority=15,
)

CONTEXT_EXCEEDED = _preset(
    "pack-recovery-context-exceeded",
    "Context Window Recovery",
    "Flag sessions whose context window is exhausted; they may need a restart.",
    "recovery",
    [_regex(r"context.*exceeded|context.*too long|context length")],
    [_act("notify_only", "Context window exceeded on {agent}")],
    cooldown=60,
    per_hour=3,
    priority=12,
)

# ── Prompts ──

PRESS_ENTER = _preset(
    "preset-yes-continue",
    "Auto-Continue Prompts",
    "Press Enter on 'Press Enter to continue' prompts.",
    "prompt",
    [_regex(r"Press Enter to continue|press enter to proceed")],
    [_act("send_keys", "Enter", 500)],
    enabled=False,
    cooldown=5,
    per_hour=50,
    priority=50,
)

RETRY_PROMPT = _preset(
    "preset-retry-prompt",
    "Auto-Retry on Failure",
    "Answer 'y' when asked to retry a failed operation.",
    "prompt",
    [_regex(r"Would you like to retry\?|Retry\?|Try again\?")],
    [_act("send_text", "y", 1000)],
    enabled=False,
    cooldown=10,
    per_hour=10,
    priority=40,
)

YES_NO = _preset(
    "pack-confirm-yes-no",
    "Yes/No Prompt Auto-Response",
    "Answer 'y' to yes/no prompts. Only enable for trusted agents.",
    "prompt",
    [_regex(r"\(y/n\)|\[y/N\]|\[Y/n\]|yes or no|proceed\?")],
    [_act("send_text", "y", 500)],
    enabled=False,
    cooldown=5,
    per_hour=50,
    priority=45,
    states=["needs_input"],
)

# ── Stall detection ──

WAITING_INPUT = _preset(
    "preset-waiting-input",
    "Waiting for Input Detection",
    "Note when a session is waiting for user input.",
    "stall",
    [{"mode": "contains", "value": "⎿", "caseSensitive": True}],
    [_act("notify_only", "{agent} is waiting for input")],
    cooldown=60,
    priority=70,
    states=["needs_input", "idle"],
)

# ── Notifications ──

TASK_STARTED = _preset(
    "preset-task-started",
    "Task Started Signal",
    "Emit a working signal carrying the task id when an agent picks up a task.",
    "notification",
    [_regex(r"Working on task ([a-z]+-[a-z0-9]+)")],
    [_act("signal", 'working {"taskId":"{$1}","agent":"{agent}"}')],
    cooldown=5,
    priority=30,
)

TASK_COMPLETE = _preset(
    "preset-task-complete",
    "Task Completion Notification",
    "Note task completion messages.",
    "notification",
    [_regex(r"✓ Task.*completed|Task closed successfully")],
    [_act("notify_only", "Task completed on {agent}")],
    cooldown=5,
    priority=80,
)

ERROR_NOTIFICATION = _preset(
    "preset-error-notification",
    "Error Detection Notification",
    "Note error lines in session output.",
    "notification",
    [_regex(r"Error:|FATAL:|CRITICAL:|Unhandled exception")],
    [_act("notify_only", "Error on {agent}: {match}")],
    enabled=False,
    cooldown=30,
    per_hour=50,
    priority=60,
)

BUILD_ERROR = _preset(
    "pack-notify-build-error",
    "Build Error Notification",
    "Note failed builds and compiler errors.",
    "notification",
    [_regex(r"Build failed|Compilation failed|Failed to compile|error TS\d+")],
    [_act("notify_only", "Build error on {agent}")],
    cooldown=30,
    priority=55,
)

TEST_FAILURE = _preset(
    "pack-notify-test-failure",
    "Test Failure Notification",
    "Note failing test runs.",
    "notification",
    [_regex(r"\d+ failing|tests? failed|AssertionError|test suite failed")],
    [_act("notify_only", "Test failure on {agent}")],
    cooldown=15,
    priority=58,
)

GIT_CONFLICT = _preset(
    "pack-notify-git-conflict",
    "Git Conflict Notification",
    "Note merge conflicts that need manual resolution.",
    "notification",
    [_regex(r"CONFLICT \(|merge conflict|Automatic merge failed", case_sensitive=False)],
    [_act("notify_only", "Merge conflict on {agent}")],
    cooldown=60,
    priority=52,
)

# Presets installed on first run when enabled.
PRESETS: tuple[Preset, ...] = (
    API_OVERLOADED,
    RATE_LIMIT,
    NETWORK_ERROR,
    BYPASS_ACCEPT,
    PRESS_ENTER,
    RETRY_PROMPT,
    WAITING_INPUT,
    TASK_STARTED,
    TASK_COMPLETE,
    ERROR_NOTIFICATION,
)

PRESET_PACKS: tuple[PresetPack, ...] = (
    PresetPack(
        id="error-recovery-pack",
        name="Error Recovery Pack",
        description="Recover from API overload, rate limits, network errors and context exhaustion",
        category="recovery",
        presets=(API_OVERLOADED, RATE_LIMIT, NETWORK_ERROR, CONTEXT_EXCEEDED),
        tags=("api", "error", "retry", "network", "rate-limit", "recovery"),
    ),
    PresetPack(
        id="auto-confirm-pack",
        name="Auto-Confirm Pack",
        description="Answer continue, retry and yes/no prompts",
        category="prompt",
        presets=(PRESS_ENTER, RETRY_PROMPT, YES_NO),
        tags=("prompt", "confirm", "yes-no"),
        enabled_by_default=False,
    ),
    PresetPack(
        id="notification-pack",
        name="Notification Pack",
        description="Record task completion, build errors, test failures and merge conflicts",
        category="notification",
        presets=(TASK_COMPLETE, BUILD_ERROR, TEST_FAILURE, GIT_CONFLICT),
        tags=("notification", "build", "test", "git"),
    ),
)

_ALL_PRESETS: dict[str, Preset] = {p.id: p for p in PRESETS}
for _pack in PRESET_PACKS:
    for _p in _pack.presets:
        _ALL_PRESETS.setdefault(_p.id, _p)


def get_preset(preset_id: str) -> Preset | None:
    return _ALL_PRESETS.get(preset_id)


def all_presets() -> list[Preset]:
    return list(_ALL_PRESETS.values())


def get_pack(pack_id: str) -> PresetPack | None:
    for pack in PRESET_PACKS:
        if pack.id == pack_id:
            return pack
    return None


def default_presets() -> list[Preset]:
    """Presets that are installed on first run."""
    return [p for p in PRESETS if p.enabled]


def create_rule_from_preset(preset: Preset, enabled: bool | None = None) -> AutomationRule:
    """Clone a preset into a new rule with fresh rule, pattern and action ids."""
    data = copy.deepcopy(preset.rule)
    for item in data["patterns"] + data["actions"]:
        item.pop("id", None)
    data["id"] = new_id("rule")
    data["presetId"] = preset.id
    if enabled is not None:
        data["enabled"] = enabled
    data.pop("createdAt", None)
    data.pop("updatedAt", None)
    return AutomationRule.from_dict(data)
