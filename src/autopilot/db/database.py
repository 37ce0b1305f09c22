"""SQLite database — async init, WAL mode, schema creation."""

from __future__ import annotations

import asyncio

import aiosqlite

from autopilot.config import DB_PATH
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS rules (
    id TEXT PRIMARY KEY,
    position INTEGER NOT NULL DEFAULT 0,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    enabled INTEGER NOT NULL DEFAULT 1,
    category TEXT NOT NULL DEFAULT 'custom',
    patterns TEXT NOT NULL,
    actions TEXT NOT NULL,
    cooldown_seconds REAL NOT NULL DEFAULT 30,
    max_triggers_per_hour INTEGER,
    session_states TEXT NOT NULL DEFAULT '[]',
    session_filter TEXT NOT NULL DEFAULT '[]',
    priority INTEGER NOT NULL DEFAULT 100,
    preset_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS automation_config (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS activity_events (
    id TEXT PRIMARY KEY,
    seq INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    rule_id TEXT NOT NULL,
    rule_name TEXT NOT NULL,
    session_name TEXT NOT NULL,
    agent_name TEXT NOT NULL DEFAULT '',
    matched_text TEXT NOT NULL DEFAULT '',
    outcomes TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_rules_position ON rules(position);
CREATE INDEX IF NOT EXISTS idx_activity_seq ON activity_events(seq);
CREATE INDEX IF NOT EXISTS idx_activity_session ON activity_events(session_name, seq);
"""

_db: aiosqlite.Connection | None = None
_db_lock = asyncio.Lock()


async def init_database(db_path: str | None = None) -> aiosqlite.Connection:
    """Initialize SQLite with WAL mode and create tables.

    Args:
        db_path: Override path for the database file. Defaults to
            ``~/.autopilot/autopilot.db``.

    Returns:
        The opened ``aiosqlite.Connection`` with WAL mode enabled.
    """
    global _db
    path = db_path or str(DB_PATH)
    logger.info(f"Initializing database at {path}")

    db = await aiosqlite.connect(path)
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    await db.execute("PRAGMA synchronous=NORMAL")
    await db.executescript(SCHEMA)
    await db.commit()

    _db = db
    logger.info("Database initialized successfully")
    return db


async def get_db() -> aiosqlite.Connection:
    """Get the database connection, initializing if needed.

    Returns:
        The shared ``aiosqlite.Connection`` singleton.
    """
    global _db
    if _db is not None:
        return _db
    async with _db_lock:
        if _db is None:
            _db = await init_database()
        return _db


async def close_database() -> None:
    """Close the database connection and reset the singleton."""
    global _db
    if _db:
        await _db.close()
        _db = None
        logger.info("Database closed")
