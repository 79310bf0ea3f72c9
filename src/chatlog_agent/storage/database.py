"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from chatlog_agent.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS members (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    platform_id     TEXT    NOT NULL UNIQUE,
    account_name    TEXT,
    group_nickname  TEXT,
    aliases_json    TEXT    NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS member_name_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    member_id       INTEGER NOT NULL REFERENCES members(id) ON DELETE CASCADE,
    name_type       TEXT    NOT NULL CHECK(name_type IN ('account_name','group_nickname')),
    name            TEXT    NOT NULL,
    start_ts        INTEGER NOT NULL,
    end_ts          INTEGER
);

CREATE TABLE IF NOT EXISTS chat_sessions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    start_ts        INTEGER NOT NULL,
    end_ts          INTEGER NOT NULL,
    message_count   INTEGER NOT NULL DEFAULT 0,
    summary         TEXT
);

CREATE TABLE IF NOT EXISTS messages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    sender_id       INTEGER NOT NULL REFERENCES members(id),
    content         TEXT,
    ts              INTEGER NOT NULL,
    chat_session_id INTEGER REFERENCES chat_sessions(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_ts
    ON messages(ts, id);

CREATE INDEX IF NOT EXISTS idx_messages_sender
    ON messages(sender_id, ts);

CREATE INDEX IF NOT EXISTS idx_messages_session
    ON messages(chat_session_id, ts);

CREATE INDEX IF NOT EXISTS idx_name_history_member
    ON member_name_history(member_id, start_ts);
"""


class Database:
    """Async SQLite database manager for one imported chat."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed", path=self._db_path)
