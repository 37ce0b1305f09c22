"""Tests for dataclass models and their wire format."""

import pytest

from autopilot.db.models import (
    Action,
    ActionOutcome,
    ActivityEvent,
    AutomationConfig,
    AutomationRule,
    Pattern,
    new_id,
)


class TestIds:
    def test_prefix_and_uniqueness(self):
        a, b = new_id("rule"), new_id("rule")
        assert a.startswith("rule-")
        assert a != b


class TestPattern:
    def test_defaults(self):
        p = Pattern(value="x")
        assert p.mode == "contains"
        assert p.case_sensitive is False
        assert p.negate is False

    def test_wire_keys(self):
        assert set(Pattern(value="x").to_dict()) == {
            "id",
            "mode",
            "value",
            "caseSensitive",
            "negate",
        }

    def test_from_dict_accepts_snake_case_and_legacy_key(self):
        p = Pattern.from_dict({"pattern": "boom", "case_sensitive": True})
        assert p.value == "boom"
        assert p.case_sensitive is True
        assert p.id.startswith("pat-")


class TestAction:
    def test_from_dict(self):
        a = Action.from_dict({"type": "send_text", "payload": "y", "delayMs": "250"})
        assert a.value == "y"
        assert a.delay_ms == 250

    def test_missing_delay_is_zero(self):
        assert Action.from_dict({"type": "notify_only"}).delay_ms == 0


class TestAutomationRule:
    def test_defaults(self):
        rule = AutomationRule(name="r")
        assert rule.enabled is True
        assert rule.category == "custom"
        assert rule.session_states == []
        assert rule.max_triggers_per_hour is None

    def test_camel_case_wire_format(self):
        data = AutomationRule(name="r", priority=3).to_dict()
        for key in (
            "cooldownSeconds",
            "maxTriggersPerHour",
            "sessionStates",
            "sessionFilter",
            "presetId",
        ):
            assert key in data
        assert data["priority"] == 3

    def test_from_dict_snake_case(self):
        rule = AutomationRule.from_dict(
            {"name": "r", "cooldown_seconds": 5, "session_states": ["idle"]}
        )
        assert rule.cooldown_seconds == 5
        assert rule.session_states == ["idle"]

    def test_dict_roundtrip_keeps_ids(self):
        rule = AutomationRule(
            name="r", patterns=[Pattern(value="x")], actions=[Action(value="y")]
        )
        again = AutomationRule.from_dict(rule.to_dict())
        assert again == rule

    def test_session_filter_defaults_to_every_session(self):
        assert AutomationRule.from_dict({"name": "r"}).session_filter == []
        rule = AutomationRule.from_dict({"name": "r", "session_filter": ["agent-web*"]})
        assert rule.session_filter == ["agent-web*"]

    def test_string_flag_left_for_validation(self):
        rule = AutomationRule.from_dict({"name": "r", "enabled": "false"})
        assert rule.enabled == "false"


class TestAutomationConfig:
    def test_defaults(self):
        cfg = AutomationConfig()
        assert cfg.enabled is True
        assert cfg.max_actions_per_minute == 30
        assert cfg.global_cooldown_seconds == 0
        assert cfg.max_activity_events == 100

    def test_from_dict_fills_from_base(self):
        base = AutomationConfig(max_actions_per_minute=10)
        cfg = AutomationConfig.from_dict({"enabled": False}, base=base)
        assert cfg.enabled is False
        assert cfg.max_actions_per_minute == 10

    def test_from_dict_snake_case(self):
        cfg = AutomationConfig.from_dict({"max_actions_per_minute": 4, "debug_logging": True})
        assert cfg.max_actions_per_minute == 4
        assert cfg.debug_logging is True

    def test_from_dict_rejects_non_bool_flags(self):
        with pytest.raises(ValueError):
            AutomationConfig.from_dict({"enabled": "false"})
        with pytest.raises(ValueError):
            AutomationConfig.from_dict({"debugLogging": 1})


class TestActivityEvent:
    def test_success_and_error(self):
        event = ActivityEvent(
            rule_id="r",
            rule_name="R",
            session_name="s",
            outcomes=[
                ActionOutcome("a1", "notify_only"),
                ActionOutcome("a2", "send_text", success=False, error="gone"),
            ],
        )
        assert event.success is False
        assert event.error == "gone"

    def test_no_outcomes_is_success(self):
        event = ActivityEvent(rule_id="r", rule_name="R", session_name="s")
        assert event.success is True
        assert event.error is None
