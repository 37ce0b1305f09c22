"""Tests for the activity log ring buffer."""

from unittest.mock import AsyncMock

import pytest

from autopilot.auto.activity import ActivityLog
from autopilot.db import database as db_module
from autopilot.db import queries
from autopilot.db.database import close_database, init_database
from autopilot.db.models import ActionOutcome, ActivityEvent


@pytest.fixture
async def db(tmp_path):
    db_module._db = None
    conn = await init_database(str(tmp_path / "test.db"))
    yield conn
    await close_database()
    db_module._db = None


def _event(n: int, session: str = "agent-a") -> ActivityEvent:
    return ActivityEvent(
        rule_id=f"rule-{n}",
        rule_name=f"Rule {n}",
        session_name=session,
        outcomes=[ActionOutcome(action_id="act-1", type="notify_only")],
    )


class TestInMemory:
    async def test_append_and_recent_newest_first(self):
        log = ActivityLog(capacity=10)
        for n in range(3):
            await log.append(_event(n))
        assert [e.rule_id for e in log.recent()] == ["rule-2", "rule-1", "rule-0"]

    async def test_capacity_evicts_oldest(self):
        log = ActivityLog(capacity=2)
        for n in range(3):
            await log.append(_event(n))
        assert len(log) == 2
        assert [e.rule_id for e in log.recent()] == ["rule-2", "rule-1"]

    async def test_filter_and_limit(self):
        log = ActivityLog()
        await log.append(_event(1, "agent-a"))
        await log.append(_event(2, "agent-b"))
        await log.append(_event(3, "agent-a"))
        assert [e.rule_id for e in log.recent(session_name="agent-a")] == ["rule-3", "rule-1"]
        assert len(log.recent(limit=1)) == 1

    async def test_clear(self):
        log = ActivityLog()
        await log.append(_event(1))
        await log.clear()
        assert len(log) == 0

    async def test_resize_shrinks(self):
        log = ActivityLog(capacity=5)
        for n in range(5):
            await log.append(_event(n))
        await log.resize(2)
        assert log.capacity == 2
        assert [e.rule_id for e in log.recent()] == ["rule-4", "rule-3"]

    async def test_storage_failure_not_raised(self):
        backend = AsyncMock()
        backend.log_activity.side_effect = RuntimeError("disk full")
        log = ActivityLog(backend=backend)
        await log.append(_event(1))
        assert len(log) == 1


class TestPersisted:
    async def test_persists_and_prunes(self, db):
        log = ActivityLog(capacity=2, backend=queries)
        for n in range(4):
            await log.append(_event(n))
        stored = await queries.get_activity()
        assert [e.rule_id for e in stored] == ["rule-3", "rule-2"]

    async def test_load_restores_order(self, db):
        writer = ActivityLog(capacity=10, backend=queries)
        for n in range(3):
            await writer.append(_event(n))
        reader = ActivityLog(capacity=10, backend=queries)
        await reader.load()
        assert [e.rule_id for e in reader.recent()] == ["rule-2", "rule-1", "rule-0"]
        assert reader.recent()[0].outcomes[0].type == "notify_only"

    async def test_clear_persisted(self, db):
        log = ActivityLog(backend=queries)
        await log.append(_event(1))
        await log.clear()
        assert await queries.get_activity() == []
