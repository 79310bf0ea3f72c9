"""SQLite-backed message store: one database file per imported chat."""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from chatlog_agent.errors import ChatNotFoundError
from chatlog_agent.log import get_logger
from chatlog_agent.storage.base import MessageStore
from chatlog_agent.storage.database import Database
from chatlog_agent.storage.models import (
    ChatSessionInfo,
    ChatSessionSearchResult,
    ConversationResult,
    DailyActivity,
    HourlyActivity,
    Member,
    MemberActivity,
    Message,
    MessageSearchResult,
    NameHistoryEntry,
    SessionMessagesResult,
    TimeFilter,
    WeekdayActivity,
)

logger = get_logger(__name__)

_SESSION_ID_PATTERN = re.compile(r"^[\w.-]+$")

_SENDER_NAME = "COALESCE(mem.group_nickname, mem.account_name, mem.platform_id)"
_MESSAGE_SELECT = f"""SELECT m.id, m.sender_id, {_SENDER_NAME} AS sender_name,
                 m.content, m.ts, m.chat_session_id
          FROM messages m JOIN members mem ON mem.id = m.sender_id"""


def _time_clause(time_filter: Optional[TimeFilter], column: str = "m.ts") -> tuple[list[str], list[Any]]:
    if time_filter is None:
        return [], []
    return [f"{column} >= ?", f"{column} <= ?"], [time_filter.start_ts, time_filter.end_ts]


def _overlap_clause(time_filter: Optional[TimeFilter]) -> tuple[list[str], list[Any]]:
    if time_filter is None:
        return [], []
    return ["cs.start_ts <= ?", "cs.end_ts >= ?"], [time_filter.end_ts, time_filter.start_ts]


def _keyword_clause(keywords: Optional[list[str]], column: str = "m.content") -> tuple[list[str], list[Any]]:
    cleaned = [k for k in (keywords or []) if k and k.strip()]
    if not cleaned:
        return [], []
    parts = " OR ".join(f"{column} LIKE ? ESCAPE '\\'" for _ in cleaned)
    params = [f"%{_escape_like(k.strip())}%" for k in cleaned]
    return [f"({parts})"], params


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _where(clauses: list[str]) -> str:
    return f" WHERE {' AND '.join(clauses)}" if clauses else ""


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["id"],
        sender_id=row["sender_id"],
        sender_name=row["sender_name"],
        content=row["content"],
        timestamp=row["ts"],
        chat_session_id=row["chat_session_id"],
    )


class SQLiteMessageStore(MessageStore):
    """Message store over per-chat SQLite files in ``db_dir``.

    ``session_id`` names the imported chat; its database lives at
    ``<db_dir>/<session_id>.db`` and is opened lazily on first use.
    """

    def __init__(self, db_dir: str | Path):
        self._db_dir = Path(db_dir)
        self._databases: dict[str, Database] = {}
        self._open_lock = asyncio.Lock()

    def db_path(self, session_id: str) -> Path:
        if not _SESSION_ID_PATTERN.match(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self._db_dir / f"{session_id}.db"

    async def _conn(self, session_id: str, create: bool = False) -> aiosqlite.Connection:
        """Connection for an imported chat; only the write API may create a new database."""
        db = self._databases.get(session_id)
        if db is None:
            async with self._open_lock:
                db = self._databases.get(session_id)
                if db is None:
                    path = self.db_path(session_id)
                    if not create and not path.exists():
                        raise ChatNotFoundError(session_id)
                    db = Database(str(path))
                    await db.initialize()
                    self._databases[session_id] = db
        return db.conn

    async def close(self) -> None:
        for db in self._databases.values():
            await db.close()
        self._databases.clear()

    # ── Write API (used by importers and tests) ─────────────────────

    async def add_member(
        self,
        session_id: str,
        platform_id: str,
        account_name: Optional[str] = None,
        group_nickname: Optional[str] = None,
        aliases: Optional[list[str]] = None,
    ) -> int:
        conn = await self._conn(session_id, create=True)
        cursor = await conn.execute(
            """INSERT INTO members (platform_id, account_name, group_nickname, aliases_json)
               VALUES (?, ?, ?, ?)""",
            (platform_id, account_name, group_nickname, json.dumps(aliases or [], ensure_ascii=False)),
        )
        await conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def add_name_history(
        self,
        session_id: str,
        member_id: int,
        name_type: str,
        name: str,
        start_ts: int,
        end_ts: Optional[int] = None,
    ) -> None:
        conn = await self._conn(session_id, create=True)
        await conn.execute(
            """INSERT INTO member_name_history (member_id, name_type, name, start_ts, end_ts)
               VALUES (?, ?, ?, ?, ?)""",
            (member_id, name_type, name, start_ts, end_ts),
        )
        await conn.commit()

    async def add_messages(self, session_id: str, rows: list[tuple[int, Optional[str], int]]) -> None:
        """Bulk insert ``(sender_id, content, ts)`` rows."""
        conn = await self._conn(session_id, create=True)
        await conn.executemany(
            "INSERT INTO messages (sender_id, content, ts) VALUES (?, ?, ?)",
            rows,
        )
        await conn.commit()

    async def rebuild_chat_sessions(self, session_id: str, gap_seconds: int = 1800) -> int:
        """Re-segment all messages into chat sessions split at gaps > ``gap_seconds``.

        Existing sessions (and their summaries) are discarded. Returns the new
        session count.
        """
        conn = await self._conn(session_id, create=True)
        cursor = await conn.execute("SELECT id, ts FROM messages ORDER BY ts, id")
        rows = await cursor.fetchall()

        segments: list[list[aiosqlite.Row]] = []
        for row in rows:
            if segments and row["ts"] - segments[-1][-1]["ts"] <= gap_seconds:
                segments[-1].append(row)
            else:
                segments.append([row])

        await conn.execute("UPDATE messages SET chat_session_id = NULL")
        await conn.execute("DELETE FROM chat_sessions")
        for segment in segments:
            cursor = await conn.execute(
                "INSERT INTO chat_sessions (start_ts, end_ts, message_count) VALUES (?, ?, ?)",
                (segment[0]["ts"], segment[-1]["ts"], len(segment)),
            )
            cs_id = cursor.lastrowid
            await conn.executemany(
                "UPDATE messages SET chat_session_id = ? WHERE id = ?",
                [(cs_id, r["id"]) for r in segment],
            )
        await conn.commit()
        logger.info("chat_sessions_rebuilt", session_id=session_id, count=len(segments))
        return len(segments)

    async def set_session_summary(self, session_id: str, chat_session_id: int, summary: str) -> None:
        conn = await self._conn(session_id, create=True)
        await conn.execute("UPDATE chat_sessions SET summary = ? WHERE id = ?", (summary, chat_session_id))
        await conn.commit()

    # ── Messages ────────────────────────────────────────────────────

    async def search_messages(
        self,
        session_id: str,
        keywords: list[str],
        time_filter: Optional[TimeFilter] = None,
        limit: int = 100,
        offset: int = 0,
        sender_id: Optional[int] = None,
    ) -> MessageSearchResult:
        """Return the newest ``limit`` matches (ties broken by id), in chronological order."""
        conn = await self._conn(session_id)
        clauses, params = _keyword_clause(keywords)
        time_clauses, time_params = _time_clause(time_filter)
        clauses += time_clauses
        params += time_params
        if sender_id is not None:
            clauses.append("m.sender_id = ?")
            params.append(sender_id)

        where = _where(clauses)
        cursor = await conn.execute(f"SELECT COUNT(*) FROM messages m{where}", params)
        total = (await cursor.fetchone())[0]

        cursor = await conn.execute(
            f"{_MESSAGE_SELECT}{where} ORDER BY m.ts DESC, m.id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        rows = await cursor.fetchall()
        messages = [_row_to_message(r) for r in reversed(rows)]
        return MessageSearchResult(total=total, messages=messages)

    async def get_recent_messages(
        self, session_id: str, time_filter: Optional[TimeFilter] = None, limit: int = 100
    ) -> MessageSearchResult:
        return await self.search_messages(session_id, [], time_filter, limit)

    async def get_conversation_between(
        self,
        session_id: str,
        member_id_1: int,
        member_id_2: int,
        time_filter: Optional[TimeFilter] = None,
        limit: int = 100,
    ) -> ConversationResult:
        conn = await self._conn(session_id)
        cursor = await conn.execute(
            f"SELECT mem.id, {_SENDER_NAME} AS name FROM members mem WHERE mem.id IN (?, ?)",
            (member_id_1, member_id_2),
        )
        names = {row["id"]: row["name"] for row in await cursor.fetchall()}
        if member_id_1 not in names or member_id_2 not in names:
            return ConversationResult(
                total=0,
                messages=[],
                member1_name=names.get(member_id_1, str(member_id_1)),
                member2_name=names.get(member_id_2, str(member_id_2)),
            )

        clauses, params = _time_clause(time_filter)
        clauses.append("m.sender_id IN (?, ?)")
        params += [member_id_1, member_id_2]
        where = _where(clauses)

        cursor = await conn.execute(f"SELECT COUNT(*) FROM messages m{where}", params)
        total = (await cursor.fetchone())[0]
        cursor = await conn.execute(
            f"{_MESSAGE_SELECT}{where} ORDER BY m.ts DESC, m.id DESC LIMIT ?",
            [*params, limit],
        )
        rows = await cursor.fetchall()
        return ConversationResult(
            total=total,
            messages=[_row_to_message(r) for r in reversed(rows)],
            member1_name=names[member_id_1],
            member2_name=names[member_id_2],
        )

    async def get_message_context(
        self, session_id: str, message_ids: list[int], context_size: int = 20
    ) -> list[Message]:
        conn = await self._conn(session_id)
        wanted: set[int] = set()
        for message_id in message_ids:
            cursor = await conn.execute("SELECT id FROM messages WHERE id = ?", (message_id,))
            if await cursor.fetchone() is None:
                continue
            wanted.add(message_id)
            cursor = await conn.execute(
                "SELECT id FROM messages WHERE id < ? ORDER BY id DESC LIMIT ?", (message_id, context_size)
            )
            wanted.update(r["id"] for r in await cursor.fetchall())
            cursor = await conn.execute(
                "SELECT id FROM messages WHERE id > ? ORDER BY id ASC LIMIT ?", (message_id, context_size)
            )
            wanted.update(r["id"] for r in await cursor.fetchall())

        if not wanted:
            return []
        ids = sorted(wanted)
        placeholders = ",".join("?" for _ in ids)
        cursor = await conn.execute(
            f"{_MESSAGE_SELECT} WHERE m.id IN ({placeholders}) ORDER BY m.ts, m.id", ids
        )
        return [_row_to_message(r) for r in await cursor.fetchall()]

    # ── Statistics ──────────────────────────────────────────────────

    async def get_member_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[MemberActivity]:
        conn = await self._conn(session_id)
        clauses, params = _time_clause(time_filter)
        cursor = await conn.execute(
            f"""SELECT mem.id, {_SENDER_NAME} AS name, COUNT(m.id) AS cnt
                FROM messages m JOIN members mem ON mem.id = m.sender_id{_where(clauses)}
                GROUP BY mem.id ORDER BY cnt DESC, mem.id""",
            params,
        )
        rows = await cursor.fetchall()
        total = sum(r["cnt"] for r in rows)
        return [
            MemberActivity(
                member_id=r["id"],
                name=r["name"],
                message_count=r["cnt"],
                percentage=round(r["cnt"] * 100 / total, 2) if total else 0.0,
            )
            for r in rows
        ]

    async def _grouped_counts(
        self, session_id: str, expr: str, time_filter: Optional[TimeFilter]
    ) -> list[aiosqlite.Row]:
        conn = await self._conn(session_id)
        clauses, params = _time_clause(time_filter)
        cursor = await conn.execute(
            f"SELECT {expr} AS bucket, COUNT(*) AS cnt FROM messages m{_where(clauses)} "
            "GROUP BY bucket ORDER BY bucket",
            params,
        )
        return await cursor.fetchall()

    async def get_hourly_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[HourlyActivity]:
        rows = await self._grouped_counts(
            session_id, "CAST(strftime('%H', m.ts, 'unixepoch', 'localtime') AS INTEGER)", time_filter
        )
        counts = {r["bucket"]: r["cnt"] for r in rows}
        return [HourlyActivity(hour=h, message_count=counts.get(h, 0)) for h in range(24)]

    async def get_weekday_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[WeekdayActivity]:
        rows = await self._grouped_counts(
            session_id, "CAST(strftime('%w', m.ts, 'unixepoch', 'localtime') AS INTEGER)", time_filter
        )
        # SQLite: 0 = Sunday
        counts = {(7 if r["bucket"] == 0 else r["bucket"]): r["cnt"] for r in rows}
        return [WeekdayActivity(weekday=d, message_count=counts.get(d, 0)) for d in range(1, 8)]

    async def get_daily_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[DailyActivity]:
        rows = await self._grouped_counts(
            session_id, "strftime('%Y-%m-%d', m.ts, 'unixepoch', 'localtime')", time_filter
        )
        return [DailyActivity(date=r["bucket"], message_count=r["cnt"]) for r in rows]

    # ── Members ─────────────────────────────────────────────────────

    async def get_members(self, session_id: str) -> list[Member]:
        conn = await self._conn(session_id)
        cursor = await conn.execute(
            """SELECT mem.*, COUNT(m.id) AS message_count
               FROM members mem LEFT JOIN messages m ON m.sender_id = mem.id
               GROUP BY mem.id ORDER BY message_count DESC, mem.id"""
        )
        return [
            Member(
                id=r["id"],
                platform_id=r["platform_id"],
                account_name=r["account_name"],
                group_nickname=r["group_nickname"],
                aliases=json.loads(r["aliases_json"] or "[]"),
                message_count=r["message_count"],
            )
            for r in await cursor.fetchall()
        ]

    async def get_member_name_history(self, session_id: str, member_id: int) -> list[NameHistoryEntry]:
        conn = await self._conn(session_id)
        cursor = await conn.execute(
            """SELECT name_type, name, start_ts, end_ts FROM member_name_history
               WHERE member_id = ? ORDER BY start_ts, id""",
            (member_id,),
        )
        return [
            NameHistoryEntry(name_type=r["name_type"], name=r["name"], start_ts=r["start_ts"], end_ts=r["end_ts"])
            for r in await cursor.fetchall()
        ]

    # ── Chat sessions ───────────────────────────────────────────────

    async def _participants(self, conn: aiosqlite.Connection, session_ids: list[int]) -> dict[int, list[str]]:
        if not session_ids:
            return {}
        placeholders = ",".join("?" for _ in session_ids)
        cursor = await conn.execute(
            f"""SELECT m.chat_session_id AS cs_id, {_SENDER_NAME} AS name, MIN(m.ts) AS first_ts
                FROM messages m JOIN members mem ON mem.id = m.sender_id
                WHERE m.chat_session_id IN ({placeholders})
                GROUP BY m.chat_session_id, m.sender_id
                ORDER BY m.chat_session_id, first_ts, m.sender_id""",
            session_ids,
        )
        result: dict[int, list[str]] = {sid: [] for sid in session_ids}
        for row in await cursor.fetchall():
            result[row["cs_id"]].append(row["name"])
        return result

    async def _first_messages(self, conn: aiosqlite.Connection, chat_session_id: int, limit: int) -> list[Message]:
        cursor = await conn.execute(
            f"{_MESSAGE_SELECT} WHERE m.chat_session_id = ? ORDER BY m.ts, m.id LIMIT ?",
            (chat_session_id, limit),
        )
        return [_row_to_message(r) for r in await cursor.fetchall()]

    async def search_sessions(
        self,
        session_id: str,
        keywords: Optional[list[str]] = None,
        time_filter: Optional[TimeFilter] = None,
        limit: int = 20,
        preview_count: int = 5,
    ) -> list[ChatSessionSearchResult]:
        conn = await self._conn(session_id)
        clauses, params = _overlap_clause(time_filter)
        kw_clauses, kw_params = _keyword_clause(keywords)
        if kw_clauses:
            clauses.append(
                f"EXISTS (SELECT 1 FROM messages m WHERE m.chat_session_id = cs.id AND {kw_clauses[0]})"
            )
            params += kw_params
        cursor = await conn.execute(
            f"SELECT cs.* FROM chat_sessions cs{_where(clauses)} ORDER BY cs.start_ts DESC, cs.id DESC LIMIT ?",
            [*params, limit],
        )
        results = []
        for row in await cursor.fetchall():
            is_complete = time_filter is None or (
                row["start_ts"] >= time_filter.start_ts and row["end_ts"] <= time_filter.end_ts
            )
            results.append(
                ChatSessionSearchResult(
                    id=row["id"],
                    start_ts=row["start_ts"],
                    end_ts=row["end_ts"],
                    message_count=row["message_count"],
                    is_complete=is_complete,
                    preview_messages=await self._first_messages(conn, row["id"], preview_count),
                )
            )
        return results

    async def get_session_messages(
        self, session_id: str, chat_session_id: int, limit: int = 500
    ) -> Optional[SessionMessagesResult]:
        conn = await self._conn(session_id)
        cursor = await conn.execute("SELECT * FROM chat_sessions WHERE id = ?", (chat_session_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        messages = await self._first_messages(conn, chat_session_id, limit)
        participants = (await self._participants(conn, [chat_session_id]))[chat_session_id]
        return SessionMessagesResult(
            session_id=row["id"],
            start_ts=row["start_ts"],
            end_ts=row["end_ts"],
            message_count=row["message_count"],
            returned_count=len(messages),
            participants=participants,
            messages=messages,
        )

    async def _list_sessions(
        self,
        session_id: str,
        time_filter: Optional[TimeFilter],
        limit: int,
        summarized_only: bool,
    ) -> list[ChatSessionInfo]:
        conn = await self._conn(session_id)
        clauses, params = _overlap_clause(time_filter)
        if summarized_only:
            clauses.append("cs.summary IS NOT NULL AND cs.summary != ''")
        cursor = await conn.execute(
            f"SELECT cs.* FROM chat_sessions cs{_where(clauses)} ORDER BY cs.start_ts DESC, cs.id DESC LIMIT ?",
            [*params, limit],
        )
        rows = await cursor.fetchall()
        participants = await self._participants(conn, [r["id"] for r in rows])
        return [
            ChatSessionInfo(
                id=r["id"],
                start_ts=r["start_ts"],
                end_ts=r["end_ts"],
                message_count=r["message_count"],
                summary=r["summary"],
                participants=participants.get(r["id"], []),
            )
            for r in rows
        ]

    async def get_session_summaries(
        self, session_id: str, limit: int = 20, time_filter: Optional[TimeFilter] = None
    ) -> list[ChatSessionInfo]:
        return await self._list_sessions(session_id, time_filter, limit, summarized_only=True)

    async def list_chat_sessions(
        self, session_id: str, time_filter: Optional[TimeFilter] = None, limit: int = 50
    ) -> list[ChatSessionInfo]:
        return await self._list_sessions(session_id, time_filter, limit, summarized_only=False)

    async def get_chat_session_messages(self, session_id: str, chat_session_id: int) -> list[Message]:
        conn = await self._conn(session_id)
        cursor = await conn.execute(
            f"{_MESSAGE_SELECT} WHERE m.chat_session_id = ? ORDER BY m.ts, m.id", (chat_session_id,)
        )
        return [_row_to_message(r) for r in await cursor.fetchall()]
