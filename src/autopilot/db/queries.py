"""Async persistence functions for rules, automation config and activity."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from autopilot.db.database import get_db
from autopilot.db.models import (
    Action,
    ActionOutcome,
    ActivityEvent,
    AutomationRule,
    Pattern,
)
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.db.queries")

# ── Rules ──

_RULE_COLUMNS = (
    "id, position, name, description, enabled, category, patterns, actions, "
    "cooldown_seconds, max_triggers_per_hour, session_states, session_filter, priority, "
    "preset_id, created_at, updated_at"
)


def _rule_params(rule: AutomationRule, position: int) -> tuple:
    return (
        rule.id,
        position,
        rule.name,
        rule.description,
        int(rule.enabled),
        rule.category,
        json.dumps([p.to_dict() for p in rule.patterns]),
        json.dumps([a.to_dict() for a in rule.actions]),
        rule.cooldown_seconds,
        rule.max_triggers_per_hour,
        json.dumps(list(rule.session_states)),
        json.dumps(list(rule.session_filter)),
        rule.priority,
        rule.preset_id,
        rule.created_at,
        rule.updated_at,
    )


async def get_all_rules() -> list[AutomationRule]:
    """Fetch every stored rule in insertion (position) order.

    Rows whose JSON columns cannot be decoded are skipped with a warning so
    one corrupted record never hides the rest.

    Returns:
        List of AutomationRule dataclasses.
    """
    db = await get_db()
    rules: list[AutomationRule] = []
    async with db.execute(
        f"SELECT {_RULE_COLUMNS} FROM rules ORDER BY position, rowid"
    ) as cur:
        rows = await cur.fetchall()
    for row in rows:
        try:
            rules.append(_row_to_rule(row))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Skipping corrupted rule row {row[0]!r}: {e}")
    return rules


async def save_rule(rule: AutomationRule, position: int = 0) -> None:
    """Insert or update a rule by ID.

    Args:
        rule: The rule to persist.
        position: Ordering slot of the rule in the rule list.
    """
    db = await get_db()
    await db.execute(
        f"""INSERT INTO rules ({_RULE_COLUMNS})
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               position = excluded.position,
               name = excluded.name,
               description = excluded.description,
               enabled = excluded.enabled,
               category = excluded.category,
               patterns = excluded.patterns,
               actions = excluded.actions,
               cooldown_seconds = excluded.cooldown_seconds,
               max_triggers_per_hour = excluded.max_triggers_per_hour,
               session_states = excluded.session_states,
               session_filter = excluded.session_filter,
               priority = excluded.priority,
               preset_id = excluded.preset_id,
               updated_at = excluded.updated_at""",
        _rule_params(rule, position),
    )
    await db.commit()


async def delete_rule(rule_id: str) -> bool:
    """Delete a rule by ID.

    Args:
        rule_id: Identifier of the rule to delete.

    Returns:
        True if a rule was deleted, False if not found.
    """
    db = await get_db()
    cur = await db.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
    await db.commit()
    return cur.rowcount > 0


async def replace_rules(rules: list[AutomationRule]) -> None:
    """Replace the whole rule table with ``rules`` (in order) in one transaction.

    Args:
        rules: The complete new rule list.
    """
    db = await get_db()
    await db.execute("DELETE FROM rules")
    await db.executemany(
        f"INSERT INTO rules ({_RULE_COLUMNS}) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [_rule_params(rule, i) for i, rule in enumerate(rules)],
    )
    await db.commit()


def _row_to_rule(row: tuple) -> AutomationRule:
    """Convert a raw SQLite row tuple to an AutomationRule dataclass.

    Args:
        row: Tuple of column values in ``_RULE_COLUMNS`` order.

    Returns:
        Populated AutomationRule dataclass.
    """
    return AutomationRule(
        id=row[0],
        name=row[2],
        description=row[3],
        enabled=bool(row[4]),
        category=row[5],
        patterns=[Pattern.from_dict(p) for p in json.loads(row[6])],
        actions=[Action.from_dict(a) for a in json.loads(row[7])],
        cooldown_seconds=row[8],
        max_triggers_per_hour=row[9],
        session_states=json.loads(row[10]),
        session_filter=json.loads(row[11]),
        priority=row[12],
        preset_id=row[13],
        created_at=row[14],
        updated_at=row[15],
    )


# ── Automation config ──


async def get_config() -> dict[str, Any] | None:
    """Fetch the stored automation config record.

    Returns:
        The config as a dict, or None if nothing was saved yet.
    """
    db = await get_db()
    async with db.execute("SELECT data FROM automation_config WHERE id = 1") as cur:
        row = await cur.fetchone()
    if not row:
        return None
    try:
        return json.loads(row[0])
    except ValueError as e:
        logger.warning(f"Stored automation config is corrupted, using defaults: {e}")
        return None


async def save_config(data: dict[str, Any]) -> None:
    """Persist the automation config record (single row).

    Args:
        data: Config dict as produced by ``AutomationConfig.to_dict()``.
    """
    db = await get_db()
    await db.execute(
        """INSERT INTO automation_config (id, data, updated_at) VALUES (1, ?, ?)
           ON CONFLICT(id) DO UPDATE SET data = excluded.data,
               updated_at = excluded.updated_at""",
        (json.dumps(data), datetime.now().isoformat()),
    )
    await db.commit()


# ── Activity ──


async def log_activity(event: ActivityEvent) -> None:
    """Append an activity event.

    Args:
        event: The firing to record.
    """
    db = await get_db()
    await db.execute(
        """INSERT INTO activity_events (id, seq, timestamp, rule_id, rule_name,
           session_name, agent_name, matched_text, outcomes)
           VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM activity_events),
                   ?, ?, ?, ?, ?, ?, ?)""",
        (
            event.id,
            event.timestamp,
            event.rule_id,
            event.rule_name,
            event.session_name,
            event.agent_name,
            event.matched_text,
            json.dumps([o.to_dict() for o in event.outcomes]),
        ),
    )
    await db.commit()


async def get_activity(
    limit: int | None = None, session_name: str | None = None
) -> list[ActivityEvent]:
    """Fetch activity events, newest first.

    Args:
        limit: Maximum number of events to return (None = all).
        session_name: If provided, only returns events for this session.

    Returns:
        List of ActivityEvent dataclasses, newest first.
    """
    db = await get_db()
    sql = (
        "SELECT id, timestamp, rule_id, rule_name, session_name, agent_name, "
        "matched_text, outcomes FROM activity_events"
    )
    params: list[Any] = []
    if session_name:
        sql += " WHERE session_name = ?"
        params.append(session_name)
    sql += " ORDER BY seq DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    async with db.execute(sql, params) as cur:
        rows = await cur.fetchall()
    return [
        ActivityEvent(
            id=r[0],
            timestamp=r[1],
            rule_id=r[2],
            rule_name=r[3],
            session_name=r[4],
            agent_name=r[5],
            matched_text=r[6],
            outcomes=[ActionOutcome.from_dict(o) for o in json.loads(r[7])],
        )
        for r in rows
    ]


async def clear_activity() -> None:
    """Delete every stored activity event."""
    db = await get_db()
    await db.execute("DELETE FROM activity_events")
    await db.commit()


async def prune_activity(keep: int) -> int:
    """Delete all but the newest ``keep`` activity events.

    Args:
        keep: Number of most recent events to retain.

    Returns:
        Number of deleted events.
    """
    db = await get_db()
    cur = await db.execute(
        """DELETE FROM activity_events WHERE seq NOT IN
           (SELECT seq FROM activity_events ORDER BY seq DESC LIMIT ?)""",
        (max(keep, 0),),
    )
    await db.commit()
    return cur.rowcount
