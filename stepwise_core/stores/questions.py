from __future__ import annotations

import json
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from stepwise_core.stores.sqlite_base import SqliteStore
from stepwise_core.stores.types import GLOBAL_SCOPE, Question


def _row_to_question(row: sqlite3.Row) -> Question:
    return Question(
        id=row["id"],
        module_id=row["module_id"],
        step_id=row["step_id"],
        question=row["question"],
        answer=row["answer"],
        video_time=row["video_time"],
        is_faq=bool(row["is_faq"]),
        user_id=row["user_id"],
        source=row["source"],
        created_at=float(row["created_at"]),
    )


def _scope_clause(scope: str | Iterable[str]) -> tuple[str, tuple[str, ...]]:
    if isinstance(scope, str):
        if scope == GLOBAL_SCOPE:
            return "", ()
        return "WHERE q.module_id = ?", (scope,)
    module_ids = tuple(dict.fromkeys(scope))
    if not module_ids:
        return "WHERE 0", ()
    placeholders = ", ".join("?" for _ in module_ids)
    return f"WHERE q.module_id IN ({placeholders})", module_ids


@dataclass(frozen=True)
class SqliteQuestionStore(SqliteStore):
    clock: Callable[[], float] = field(default=time.time, compare=False)

    def add(
        self,
        *,
        module_id: str,
        question: str,
        answer: str,
        source: str,
        step_id: str | None = None,
        video_time: float | None = None,
        user_id: str | None = None,
        embedding: Sequence[float] | None = None,
    ) -> Question:
        question_id = str(uuid.uuid4())
        now = self.clock()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO questions (
                    id, module_id, step_id, question, answer, video_time,
                    is_faq, user_id, source, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    question_id,
                    module_id,
                    step_id,
                    question,
                    answer,
                    video_time,
                    user_id,
                    source,
                    now,
                ),
            )
            if embedding is not None:
                self._insert_vector(conn, question_id, embedding, now)
            row = conn.execute(
                "SELECT * FROM questions WHERE id = ?",
                (question_id,),
            ).fetchone()
        return _row_to_question(row)

    def _insert_vector(
        self,
        conn: sqlite3.Connection,
        question_id: str,
        embedding: Sequence[float],
        now: float,
    ) -> None:
        vector = [float(value) for value in embedding]
        conn.execute(
            """
            INSERT OR REPLACE INTO question_vectors (
                question_id, embedding, dim, created_at
            ) VALUES (?, ?, ?, ?)
            """,
            (question_id, json.dumps(vector), len(vector), now),
        )

    def get(self, question_id: str) -> Question | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM questions WHERE id = ?",
                (question_id,),
            ).fetchone()
        return _row_to_question(row) if row else None

    def list_for_module(
        self,
        module_id: str,
        *,
        faq_only: bool = False,
        limit: int = 100,
    ) -> list[Question]:
        sql = "SELECT * FROM questions WHERE module_id = ?"
        if faq_only:
            sql += " AND is_faq = 1"
        sql += " ORDER BY created_at DESC LIMIT ?"
        with self._read() as conn:
            rows = conn.execute(sql, (module_id, int(limit))).fetchall()
        return [_row_to_question(row) for row in rows]

    def set_faq(self, question_id: str, is_faq: bool) -> Question | None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE questions SET is_faq = ? WHERE id = ?",
                (1 if is_faq else 0, question_id),
            )
            row = conn.execute(
                "SELECT * FROM questions WHERE id = ?",
                (question_id,),
            ).fetchone()
        return _row_to_question(row) if row else None

    def delete(self, question_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM questions WHERE id = ?", (question_id,))
            return cursor.rowcount > 0

    def load_vectors(
        self,
        scope: str | Iterable[str],
    ) -> list[tuple[Question, list[float]]]:
        """Questions with their stored embeddings, restricted to ``scope``.

        ``scope`` is a module id, a collection of module ids, or
        ``GLOBAL_SCOPE`` for every stored question.
        """
        where, params = _scope_clause(scope)
        sql = (
            "SELECT q.*, v.embedding AS embedding FROM questions q "
            "JOIN question_vectors v ON v.question_id = q.id "
            f"{where} ORDER BY q.created_at DESC"
        )
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [(_row_to_question(row), json.loads(row["embedding"])) for row in rows]
