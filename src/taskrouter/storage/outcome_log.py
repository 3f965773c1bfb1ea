"""
Outcome Log - append-only record of completed-task outcomes.

Async (aiosqlite) so the API can append without blocking its event loop.
The CLI drives it through asyncio.run and replays the log into a learner.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from taskrouter.config import default_data_dir
from taskrouter.models import Pool, TaskOutcome


class OutcomeLog:
    """Persistent outcome log, used as an async context manager."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path) if db_path else default_data_dir() / "data" / "outcomes.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: Optional[aiosqlite.Connection] = None

    async def __aenter__(self) -> "OutcomeLog":
        await self._init_db()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        await self.close()

    async def _init_db(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS outcomes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id TEXT NOT NULL,
                original_assignee TEXT NOT NULL,
                final_assignee TEXT NOT NULL,
                was_reassigned INTEGER NOT NULL DEFAULT 0,
                successful INTEGER NOT NULL DEFAULT 0,
                failed INTEGER NOT NULL DEFAULT 0,
                complexity REAL,
                task_type TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                has_detailed_specs INTEGER,
                recorded_at TEXT NOT NULL,
                CHECK (original_assignee IN ('human', 'ai', 'hybrid')),
                CHECK (final_assignee IN ('human', 'ai', 'hybrid')),
                CHECK (complexity IS NULL OR complexity BETWEEN 0.0 AND 10.0)
            )
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_outcomes_task
            ON outcomes(task_id)
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def append(self, outcome: TaskOutcome) -> int:
        """Append one outcome and return its row id."""
        assert self._db is not None
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime())
        cursor = await self._db.execute(
            """INSERT INTO outcomes
               (task_id, original_assignee, final_assignee, was_reassigned,
                successful, failed, complexity, task_type, tags,
                has_detailed_specs, recorded_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                outcome.task_id,
                outcome.original_assignee.value,
                outcome.final_assignee.value,
                int(outcome.was_reassigned),
                int(outcome.successful),
                int(outcome.failed),
                outcome.complexity,
                outcome.task_type,
                json.dumps(sorted(outcome.tags)),
                None if outcome.has_detailed_specs is None else int(outcome.has_detailed_specs),
                timestamp,
            ),
        )
        await self._db.commit()
        return cursor.lastrowid or 0

    async def recent(self, limit: int = 1000) -> List[TaskOutcome]:
        """Most recent outcomes, oldest first so they replay in order."""
        assert self._db is not None
        cursor = await self._db.execute(
            """SELECT task_id, original_assignee, final_assignee, was_reassigned,
                      successful, failed, complexity, task_type, tags, has_detailed_specs
               FROM outcomes ORDER BY id DESC LIMIT ?""",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [_row_to_outcome(row) for row in reversed(rows)]

    async def count(self) -> int:
        assert self._db is not None
        cursor = await self._db.execute("SELECT COUNT(*) FROM outcomes")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def summary(self) -> Dict[str, Any]:
        """Per-pool totals keyed by the original assignee."""
        assert self._db is not None
        cursor = await self._db.execute(
            """SELECT original_assignee,
                      COUNT(*),
                      SUM(successful AND NOT was_reassigned AND NOT failed),
                      SUM(was_reassigned)
               FROM outcomes GROUP BY original_assignee"""
        )
        rows = await cursor.fetchall()
        return {
            pool: {"total": total, "clean_successes": wins or 0, "reassigned": moved or 0}
            for pool, total, wins, moved in rows
        }


def _row_to_outcome(row: Any) -> TaskOutcome:
    (task_id, original, final, reassigned, successful, failed,
     complexity, task_type, tags, specs) = row
    return TaskOutcome(
        task_id=task_id,
        original_assignee=Pool(original),
        final_assignee=Pool(final),
        was_reassigned=bool(reassigned),
        successful=bool(successful),
        failed=bool(failed),
        complexity=complexity,
        task_type=task_type,
        tags=frozenset(json.loads(tags)),
        has_detailed_specs=None if specs is None else bool(specs),
    )
