"""Tests for the automation engine — firing, delays, failure isolation, activity."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from autopilot.auto import matcher
from autopilot.auto.activity import ActivityLog
from autopilot.auto.engine import AutomationEngine
from autopilot.auto.limiter import RateLimiter
from autopilot.auto.store import RuleStore
from autopilot.db.models import ActionOutcome


@pytest.fixture(autouse=True)
def clean_cache():
    matcher.clear_cache()
    yield
    matcher.clear_cache()


def _ok_executor():
    executor = AsyncMock()

    async def execute(action, session_name, value):
        return ActionOutcome(action_id=action.id, type=action.type, value=value)

    executor.execute.side_effect = execute
    return executor


@pytest.fixture
async def setup():
    limiter = RateLimiter()
    store = RuleStore(limiter=limiter, install_defaults=False)
    await store.load()
    activity = ActivityLog(capacity=50)
    executor = _ok_executor()
    engine = AutomationEngine(
        store, limiter, executor, activity, agent_prefix="agent-", max_scan_chars=100
    )
    return engine, store, executor, activity


def _rule(name="Recover", cooldown=30, priority=100, actions=None, patterns=None) -> dict:
    return {
        "name": name,
        "patterns": patterns or [{"value": "API is overloaded"}],
        "actions": actions or [{"type": "send_keys", "value": "Enter"}],
        "cooldownSeconds": cooldown,
        "priority": priority,
    }


async def _run(engine, text, now, session="agent-FairBay", state="working"):
    tasks = engine.process_output(session, text, state, now=now)
    return await asyncio.gather(*tasks)


class TestCooldownScenario:
    async def test_fires_then_waits_out_cooldown(self, setup):
        engine, store, _, activity = setup
        await store.create_rule(_rule(cooldown=30))
        text = "Error: API is overloaded, retrying..."

        await _run(engine, text, now=0.0)
        assert len(activity) == 1
        await _run(engine, text, now=10.0)
        assert len(activity) == 1
        await _run(engine, text, now=31.0)
        assert len(activity) == 2


class TestFiring:
    async def test_signal_capture_interpolated(self, setup):
        engine, store, executor, activity = setup
        await store.create_rule(
            _rule(
                patterns=[{"mode": "regex", "value": r"Working on task (jat-[a-z0-9]+)"}],
                actions=[{"type": "signal", "value": 'working {"taskId":"{$1}"}'}],
            )
        )
        (event,) = await _run(engine, "Working on task jat-xyz", now=0.0)
        _, session_name, value = executor.execute.call_args[0]
        assert session_name == "agent-FairBay"
        assert value == 'working {"taskId":"jat-xyz"}'
        assert event.matched_text == "Working on task jat-xyz"

    async def test_agent_variable(self, setup):
        engine, store, executor, _ = setup
        await store.create_rule(_rule(actions=[{"type": "notify_only", "value": "{agent}"}]))
        await _run(engine, "API is overloaded", now=0.0)
        assert executor.execute.call_args[0][2] == "FairBay"

    async def test_actions_run_in_order_with_delays(self, setup):
        engine, store, executor, _ = setup
        await store.create_rule(
            _rule(
                actions=[
                    {"type": "notify_only", "value": "first", "delayMs": 20},
                    {"type": "send_keys", "value": "Enter", "delayMs": 10},
                ]
            )
        )
        await _run(engine, "API is overloaded", now=0.0)
        values = [c.args[2] for c in executor.execute.call_args_list]
        assert values == ["first", "Enter"]

    async def test_failed_action_does_not_stop_siblings(self, setup):
        engine, store, executor, activity = setup

        async def execute(action, session_name, value):
            if value == "boom":
                return ActionOutcome(action.id, action.type, value, False, "session gone")
            return ActionOutcome(action.id, action.type, value)

        executor.execute.side_effect = execute
        await store.create_rule(
            _rule(
                actions=[
                    {"type": "send_text", "value": "boom"},
                    {"type": "notify_only", "value": "after"},
                ]
            )
        )
        (event,) = await _run(engine, "API is overloaded", now=0.0)
        assert [o.success for o in event.outcomes] == [False, True]
        assert event.success is False
        assert event.error == "session gone"
        assert activity.recent()[0] is event

    async def test_priority_order_of_firings(self, setup):
        engine, store, _, _ = setup
        await store.create_rule(_rule("Notify", priority=5))
        await store.create_rule(_rule("Recovery", priority=1))
        tasks = engine.process_output("agent-a", "API is overloaded", "working", now=0.0)
        assert [t.get_name() for t in tasks] == [
            f"fire-{r.id}" for r in sorted(store.list_rules(), key=lambda r: r.priority)
        ]
        await asyncio.gather(*tasks)

    async def test_global_cap_applies_across_sessions(self, setup):
        engine, store, _, activity = setup
        await store.update_config(max_actions_per_minute=1)
        await store.create_rule(_rule(cooldown=0))
        await _run(engine, "API is overloaded", now=0.0, session="agent-a")
        await _run(engine, "API is overloaded", now=1.0, session="agent-b")
        assert len(activity) == 1

    async def test_scan_window_keeps_tail(self, setup):
        engine, store, _, activity = setup
        await store.create_rule(_rule())
        old = "API is overloaded" + "." * 200
        await _run(engine, old, now=0.0)
        assert len(activity) == 0
        await _run(engine, "." * 200 + "API is overloaded", now=0.0)
        assert len(activity) == 1

    async def test_empty_output(self, setup):
        engine, store, _, _ = setup
        await store.create_rule(_rule())
        assert engine.process_output("s", "", "working", now=0.0) == []

    async def test_secrets_redacted_in_activity(self, setup):
        engine, store, _, activity = setup
        await store.create_rule(_rule(patterns=[{"mode": "regex", "value": r"token=\S+"}]))
        await _run(engine, "export token=abc123secret", now=0.0)
        assert "abc123secret" not in activity.recent()[0].matched_text


class TestDryRunAndDrain:
    async def test_dry_run_does_not_fire(self, setup):
        engine, store, executor, activity = setup
        await store.create_rule(_rule())
        matches = engine.dry_run("agent-a", "API is overloaded", "working", now=0.0)
        assert len(matches) == 1
        assert engine.dry_run("agent-a", "API is overloaded", "working", now=0.0)
        executor.execute.assert_not_called()
        assert len(activity) == 0

    async def test_drain_waits_for_firings(self, setup):
        engine, store, _, activity = setup
        await store.create_rule(
            _rule(actions=[{"type": "notify_only", "value": "x", "delayMs": 30}])
        )
        engine.process_output("agent-a", "API is overloaded", "working", now=0.0)
        assert engine.in_flight == 1
        assert await engine.drain(timeout=2) == 0
        assert len(activity) == 1
        assert engine.in_flight == 0

    async def test_drain_cancels_stragglers(self, setup):
        engine, store, _, activity = setup
        await store.create_rule(
            _rule(actions=[{"type": "notify_only", "value": "x", "delayMs": 60000}])
        )
        engine.process_output("agent-a", "API is overloaded", "working", now=0.0)
        assert await engine.drain(timeout=0.05) == 1
        await asyncio.sleep(0)
        assert len(activity) == 0

    async def test_crashing_firing_is_logged(self, setup, caplog):
        engine, store, executor, _ = setup
        executor.execute.side_effect = RuntimeError("executor bug")
        await store.create_rule(_rule())
        tasks = engine.process_output("agent-a", "API is overloaded", "working", now=0.0)
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.sleep(0)
        assert "executor bug" in caplog.text
