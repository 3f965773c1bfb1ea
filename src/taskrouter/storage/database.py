"""SQLite storage with WAL mode: model lineage and assignment history."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from taskrouter.config import default_data_dir
from taskrouter.models import Assignment, RoutingModel

DB_FILENAME = "taskrouter.db"


class Database:
    """SQLite storage layer with WAL mode for the routing engine."""

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or default_data_dir()
        self.db_path = self.data_dir / "data" / DB_FILENAME

    def _ensure_dirs(self) -> None:
        (self.data_dir / "data").mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with WAL mode."""
        self._ensure_dirs()
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        with self.connect() as conn:
            conn.executescript(_SCHEMA)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_insert(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an insert and return lastrowid."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid or 0


class ModelStore:
    """Lineage of published RoutingModel snapshots."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, model: RoutingModel, reason: str = "recalibration") -> int:
        return self.db.execute_insert(
            """
            INSERT INTO model_snapshots (version, model, outcome_count, reason)
            VALUES (?, ?, ?, ?)
            """,
            (model.version, json.dumps(model.to_dict()), model.outcome_count, reason),
        )

    def latest(self) -> RoutingModel | None:
        rows = self.db.execute(
            "SELECT model FROM model_snapshots ORDER BY id DESC LIMIT 1"
        )
        if not rows:
            return None
        return RoutingModel.from_dict(json.loads(rows[0]["model"]))

    def lineage(self, limit: int = 10) -> list[dict[str, Any]]:
        rows = self.db.execute(
            """
            SELECT version, outcome_count, reason, saved_at
            FROM model_snapshots
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [dict(row) for row in rows]

    def rollback(self) -> RoutingModel | None:
        """Re-publish the snapshot before the latest one.

        The restored model is saved as a new lineage row with the next
        version number, so history is never rewritten.

        Returns:
            The restored model, or None when there is no previous snapshot.
        """
        rows = self.db.execute(
            "SELECT version, model FROM model_snapshots ORDER BY id DESC LIMIT 2"
        )
        if len(rows) < 2:
            return None

        latest_version = int(rows[0]["version"])
        previous = RoutingModel.from_dict(json.loads(rows[1]["model"]))
        restored = RoutingModel.from_dict(
            {**previous.to_dict(), "version": latest_version + 1}
        )
        self.save(restored, reason=f"rollback to v{previous.version}")
        return restored


class AssignmentStore:
    """Record of balancer decisions for the history command."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def record(self, assignments: Sequence[Assignment], model_version: int) -> None:
        with self.db.connect() as conn:
            conn.executemany(
                """
                INSERT INTO assignments
                    (task_id, pool, status, confidence, priority, complexity,
                     reason, model_version)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        a.task_id,
                        a.pool.value,
                        a.status.value,
                        a.confidence,
                        a.priority,
                        a.complexity,
                        a.reason,
                        model_version,
                    )
                    for a in assignments
                ],
            )

    def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = self.db.execute(
            """
            SELECT task_id, pool, status, confidence, priority, complexity,
                   reason, model_version, assigned_at
            FROM assignments
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [dict(row) for row in rows]


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS assignments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    pool TEXT NOT NULL,
    status TEXT NOT NULL,
    confidence REAL NOT NULL DEFAULT 0.0,
    priority REAL NOT NULL DEFAULT 0.0,
    complexity REAL NOT NULL DEFAULT 0.0,
    reason TEXT NOT NULL DEFAULT '',
    model_version INTEGER NOT NULL,
    assigned_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS model_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    version INTEGER NOT NULL,
    model TEXT NOT NULL,
    outcome_count INTEGER NOT NULL DEFAULT 0,
    reason TEXT NOT NULL DEFAULT '',
    saved_at TEXT NOT NULL DEFAULT (datetime('now'))
);

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""
