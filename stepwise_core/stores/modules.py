from __future__ import annotations

import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Sequence

from stepwise_core.errors import NotFoundError, ValidationError
from stepwise_core.steps.types import TimedStep
from stepwise_core.stores.sqlite_base import SqliteStore
from stepwise_core.stores.types import (
    STALE_LOCK_MESSAGE,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_READY,
    STATUS_UPLOADED,
    Module,
    ProcessingDecision,
    Step,
)

START_PROGRESS = 5


def _row_to_module(row: sqlite3.Row) -> Module:
    return Module(
        id=row["id"],
        status=row["status"],
        progress=int(row["progress"] or 0),
        video_key=row["video_key"],
        steps_key=row["steps_key"],
        transcript_text=row["transcript_text"],
        last_error=row["last_error"],
        title=row["title"],
        user_id=row["user_id"],
        run_id=row["run_id"],
        transcript_job_id=row["transcript_job_id"],
        duration_seconds=row["duration_seconds"],
        created_at=float(row["created_at"]),
        updated_at=float(row["updated_at"]),
    )


def _row_to_step(row: sqlite3.Row) -> Step:
    return Step(
        id=row["id"],
        module_id=row["module_id"],
        order=int(row["step_order"]),
        text=row["text"],
        start_time=float(row["start_time"]),
        end_time=float(row["end_time"]),
        timing_source=row["timing_source"],
    )


@dataclass(frozen=True)
class SqliteModuleStore(SqliteStore):
    stale_after: timedelta = timedelta(minutes=10)
    clock: Callable[[], float] = field(default=time.time, compare=False)

    def _fetch(self, conn: sqlite3.Connection, module_id: str) -> Module | None:
        row = conn.execute("SELECT * FROM modules WHERE id = ?", (module_id,)).fetchone()
        return _row_to_module(row) if row else None

    def create(
        self,
        *,
        video_key: str,
        title: str | None = None,
        user_id: str | None = None,
        module_id: str | None = None,
    ) -> Module:
        module_id = module_id or str(uuid.uuid4())
        now = self.clock()
        with self._transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO modules (
                        id, status, progress, video_key, title, user_id,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (module_id, STATUS_UPLOADED, 0, video_key, title, user_id, now, now),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(f"Module already exists: {module_id}") from exc
            module = self._fetch(conn, module_id)
        assert module is not None
        return module

    def get(self, module_id: str) -> Module | None:
        with self._read() as conn:
            return self._fetch(conn, module_id)

    def require(self, module_id: str) -> Module:
        module = self.get(module_id)
        if module is None:
            raise NotFoundError(f"Module not found: {module_id}")
        return module

    def is_stale(self, module: Module, now: float | None = None) -> bool:
        now = self.clock() if now is None else now
        return module.updated_at < now - self.stale_after.total_seconds()

    def begin_processing(
        self,
        module_id: str,
        *,
        reset: bool = False,
        force: bool = False,
    ) -> ProcessingDecision:
        """Take the per-module processing lock inside one write transaction.

        UPLOADED modules always start. A live PROCESSING run is only
        superseded with ``force``; a stale one also yields to ``reset``.
        READY/FAILED modules restart only when ``reset`` is set, which also
        clears steps, transcript and the previous error.
        """
        now = self.clock()
        with self._transaction() as conn:
            module = self._fetch(conn, module_id)
            if module is None:
                raise NotFoundError(f"Module not found: {module_id}")

            if module.status == STATUS_PROCESSING:
                stale = self.is_stale(module, now)
                if not force and not (reset and stale):
                    return ProcessingDecision(action="skip_processing", module=module)
            elif module.status in {STATUS_READY, STATUS_FAILED} and not reset:
                return ProcessingDecision(action="skip_finished", module=module)

            run_id = str(uuid.uuid4())
            if reset:
                conn.execute("DELETE FROM steps WHERE module_id = ?", (module_id,))
                conn.execute(
                    """
                    UPDATE modules
                    SET transcript_text = NULL, steps_key = NULL,
                        duration_seconds = NULL
                    WHERE id = ?
                    """,
                    (module_id,),
                )
            conn.execute(
                """
                UPDATE modules
                SET status = ?, progress = ?, last_error = NULL, run_id = ?,
                    transcript_job_id = NULL, updated_at = ?
                WHERE id = ?
                """,
                (STATUS_PROCESSING, START_PROGRESS, run_id, now, module_id),
            )
            updated = self._fetch(conn, module_id)
        assert updated is not None
        superseded = module.run_id if module.status == STATUS_PROCESSING else None
        return ProcessingDecision(
            action="process",
            module=updated,
            run_id=run_id,
            superseded_run_id=superseded,
        )

    def _update_run(
        self,
        module_id: str,
        run_id: str,
        sql: str,
        params: tuple,
        extra_where: str = "",
        extra_params: tuple = (),
    ) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE modules SET {sql}, updated_at = ? "
                f"WHERE id = ? AND run_id = ? AND status = ?{extra_where}",
                (
                    *params,
                    self.clock(),
                    module_id,
                    run_id,
                    STATUS_PROCESSING,
                    *extra_params,
                ),
            )
            return cursor.rowcount > 0

    def update_progress(self, module_id: str, run_id: str, progress: int) -> bool:
        """Raise progress for the current run; never lowers it."""
        return self._update_run(
            module_id,
            run_id,
            "progress = MAX(progress, ?)",
            (max(0, min(100, int(progress))),),
        )

    def claim_progress(self, module_id: str, run_id: str, progress: int) -> bool:
        """Move progress up to ``progress``; False if it was already there.

        Lets exactly one of several duplicate deliveries continue a run.
        """
        return self._update_run(
            module_id,
            run_id,
            "progress = ?",
            (int(progress),),
            extra_where=" AND progress < ?",
            extra_params=(int(progress),),
        )

    def set_transcript_job(self, module_id: str, run_id: str, job_id: str) -> bool:
        return self._update_run(module_id, run_id, "transcript_job_id = ?", (job_id,))

    def save_transcript(
        self,
        module_id: str,
        run_id: str,
        text: str,
        duration_seconds: float | None,
    ) -> bool:
        return self._update_run(
            module_id,
            run_id,
            "transcript_text = ?, duration_seconds = COALESCE(?, duration_seconds)",
            (text, duration_seconds),
        )

    def complete_run(
        self,
        module_id: str,
        run_id: str,
        steps: Sequence[TimedStep],
        *,
        timing_source: str,
        steps_key: str | None,
    ) -> bool:
        """Replace the module's steps and mark it READY in one transaction."""
        now = self.clock()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT run_id, status FROM modules WHERE id = ?",
                (module_id,),
            ).fetchone()
            if row is None or row["run_id"] != run_id or row["status"] != STATUS_PROCESSING:
                return False
            conn.execute("DELETE FROM steps WHERE module_id = ?", (module_id,))
            conn.executemany(
                """
                INSERT INTO steps (
                    id, module_id, step_order, text, start_time, end_time,
                    timing_source
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        str(uuid.uuid4()),
                        module_id,
                        index,
                        step.text,
                        step.start,
                        step.end,
                        timing_source,
                    )
                    for index, step in enumerate(steps, start=1)
                ],
            )
            conn.execute(
                """
                UPDATE modules
                SET status = ?, progress = 100, last_error = NULL, steps_key = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (STATUS_READY, steps_key, now, module_id),
            )
            return True

    def fail_run(self, module_id: str, run_id: str, error: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE modules
                SET status = ?, progress = 0, last_error = ?, updated_at = ?
                WHERE id = ? AND run_id = ? AND status = ?
                """,
                (STATUS_FAILED, error, self.clock(), module_id, run_id, STATUS_PROCESSING),
            )
            return cursor.rowcount > 0

    def list_steps(self, module_id: str) -> list[Step]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM steps WHERE module_id = ? ORDER BY step_order",
                (module_id,),
            ).fetchall()
        return [_row_to_step(row) for row in rows]

    def reap_stale(self, now: float | None = None) -> list[str]:
        """Fail every PROCESSING module idle longer than the staleness window."""
        now = self.clock() if now is None else now
        cutoff = now - self.stale_after.total_seconds()
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM modules WHERE status = ? AND updated_at < ?",
                (STATUS_PROCESSING, cutoff),
            ).fetchall()
            module_ids = [row["id"] for row in rows]
            if module_ids:
                conn.executemany(
                    """
                    UPDATE modules
                    SET status = ?, progress = 0, last_error = ?, updated_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    [
                        (STATUS_FAILED, STALE_LOCK_MESSAGE, now, module_id, STATUS_PROCESSING)
                        for module_id in module_ids
                    ],
                )
        return module_ids
