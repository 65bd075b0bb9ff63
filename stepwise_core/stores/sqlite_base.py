from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from stepwise_core.errors import RecoverableError

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS modules (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        progress INTEGER NOT NULL DEFAULT 0,
        video_key TEXT NOT NULL,
        steps_key TEXT,
        transcript_text TEXT,
        last_error TEXT,
        title TEXT,
        user_id TEXT,
        run_id TEXT,
        transcript_job_id TEXT,
        duration_seconds REAL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_modules_status ON modules (status, updated_at)",
    """
    CREATE TABLE IF NOT EXISTS steps (
        id TEXT PRIMARY KEY,
        module_id TEXT NOT NULL REFERENCES modules (id) ON DELETE CASCADE,
        step_order INTEGER NOT NULL,
        text TEXT NOT NULL,
        start_time REAL NOT NULL,
        end_time REAL NOT NULL,
        timing_source TEXT NOT NULL,
        UNIQUE (module_id, step_order)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id TEXT PRIMARY KEY,
        module_id TEXT NOT NULL,
        step_id TEXT,
        question TEXT NOT NULL,
        answer TEXT NOT NULL,
        video_time REAL,
        is_faq INTEGER NOT NULL DEFAULT 0,
        user_id TEXT,
        source TEXT NOT NULL,
        created_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_questions_module ON questions (module_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS question_vectors (
        question_id TEXT PRIMARY KEY REFERENCES questions (id) ON DELETE CASCADE,
        embedding TEXT NOT NULL,
        dim INTEGER NOT NULL,
        created_at REAL NOT NULL
    )
    """,
)


@dataclass(frozen=True)
class SqliteStore:
    path: str

    def __post_init__(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._transaction(immediate=False) as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """One explicit transaction; ``BEGIN IMMEDIATE`` takes the write lock up front."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise RecoverableError(f"SQLite connection failed: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise RecoverableError(f"SQLite write failed: {exc}") from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise RecoverableError(f"SQLite connection failed: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise RecoverableError(f"SQLite read failed: {exc}") from exc
        finally:
            conn.close()
