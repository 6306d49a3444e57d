"""
memory/run_journal.py
─────────────────────
Local audit journal of assistant runs (SQLite via aiosqlite).
Every run gets a session id; the instruction, each progress line and the
outcome are appended in order so a run can be replayed from the CLI.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import aiosqlite

from autocrm.config.settings import settings

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS run_journal (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id      TEXT NOT NULL,
    account_id      TEXT,
    role            TEXT NOT NULL,
    content         TEXT NOT NULL,
    timestamp       REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_journal_session ON run_journal(session_id);
"""


class RunJournal:
    """Async append-only journal of assistant runs."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.sqlite_db_path

    async def init_db(self) -> None:
        """Create the journal table. Safe to call multiple times (IF NOT EXISTS)."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(CREATE_TABLES_SQL)
            await db.commit()
        logger.info("Run journal initialised at %s", self.db_path)

    async def record(
        self,
        session_id: str,
        role: str,
        content: str,
        account_id: Optional[str] = None,
    ) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "INSERT INTO run_journal (session_id, account_id, role, content, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (session_id, account_id, role, content, time.time()),
            )
            await db.commit()
            return cursor.lastrowid

    async def recall_session(self, session_id: str) -> List[Dict[str, Any]]:
        """Return all entries for a given run (for replay/audit)."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM run_journal WHERE session_id = ? ORDER BY id ASC",
                (session_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def recent_sessions(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent runs with their opening instruction and entry count."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """SELECT session_id,
                          MAX(account_id)  AS account_id,
                          MIN(timestamp)   AS started_at,
                          COUNT(*)         AS entries,
                          (SELECT content FROM run_journal j2
                            WHERE j2.session_id = j.session_id AND j2.role = 'user'
                            ORDER BY id ASC LIMIT 1) AS instruction
                   FROM run_journal j
                   GROUP BY session_id
                   ORDER BY started_at DESC
                   LIMIT ?""",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [dict(r) for r in rows]


# Module-level singleton
run_journal = RunJournal()
