"""Tests for the SQLite storage layer and the async outcome log."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from pathlib import Path

import pytest

from taskrouter.models import (
    Assignment,
    AssignmentStatus,
    Pool,
    RoutingModel,
    TaskOutcome,
    Thresholds,
)
from taskrouter.storage import AssignmentStore, Database, ModelStore, OutcomeLog


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def db(tmp_path: Path) -> Database:
    database = Database(data_dir=tmp_path / "router")
    database.ensure_tables()
    return database


# ═══════════════════════════════════════════════════════════════════════════
# DATABASE
# ═══════════════════════════════════════════════════════════════════════════


def test_ensure_tables(db: Database) -> None:
    assert db.db_path.exists()
    assert db.db_path.name == "taskrouter.db"


def test_wal_mode(db: Database) -> None:
    with db.connect() as conn:
        result = conn.execute("PRAGMA journal_mode").fetchone()
        assert result[0] == "wal"


def test_schema_version(db: Database) -> None:
    db.ensure_tables()
    rows = db.execute("SELECT version FROM schema_version")
    assert len(rows) == 1
    assert rows[0]["version"] == 1


def test_default_location_follows_home(isolated_home: Path) -> None:
    assert Database().db_path == isolated_home / "data" / "taskrouter.db"


# ═══════════════════════════════════════════════════════════════════════════
# MODEL LINEAGE
# ═══════════════════════════════════════════════════════════════════════════


def test_latest_is_none_when_empty(db: Database) -> None:
    assert ModelStore(db).latest() is None


def test_save_and_load_latest(db: Database) -> None:
    models = ModelStore(db)
    models.save(RoutingModel(), reason="init")
    models.save(RoutingModel(version=2, thresholds=Thresholds(ai_max=2.5)))

    latest = models.latest()
    assert latest is not None
    assert latest.version == 2
    assert latest.thresholds.ai_max == 2.5
    assert [row["reason"] for row in models.lineage()] == ["recalibration", "init"]


def test_rollback_republishes_previous_snapshot(db: Database) -> None:
    models = ModelStore(db)
    first = RoutingModel(version=1)
    models.save(first, reason="init")
    models.save(replace(first, version=2, thresholds=Thresholds(ai_max=2.0)))

    restored = models.rollback()
    assert restored is not None
    assert restored.version == 3
    assert restored.thresholds == first.thresholds

    latest = models.latest()
    assert latest is not None and latest.version == 3
    assert models.lineage(limit=1)[0]["reason"] == "rollback to v1"


def test_rollback_needs_two_snapshots(db: Database) -> None:
    models = ModelStore(db)
    assert models.rollback() is None
    models.save(RoutingModel())
    assert models.rollback() is None


# ═══════════════════════════════════════════════════════════════════════════
# ASSIGNMENT HISTORY
# ═══════════════════════════════════════════════════════════════════════════


def test_assignment_history_newest_first(db: Database) -> None:
    store = AssignmentStore(db)
    store.record(
        [
            Assignment("a", Pool.AI, AssignmentStatus.ASSIGNED, datetime(2026, 3, 2, 10), 0.8, "ok"),
            Assignment("b", Pool.HUMAN, AssignmentStatus.DEFERRED, None, 0.7, "full"),
        ],
        model_version=4,
    )
    rows = store.recent()
    assert [r["task_id"] for r in rows] == ["b", "a"]
    assert rows[0]["status"] == "deferred"
    assert rows[1]["model_version"] == 4


def test_recording_empty_batch_is_noop(db: Database) -> None:
    store = AssignmentStore(db)
    store.record([], model_version=1)
    assert store.recent() == []


# ═══════════════════════════════════════════════════════════════════════════
# OUTCOME LOG
# ═══════════════════════════════════════════════════════════════════════════


class TestOutcomeLog:
    @pytest.mark.anyio
    async def test_append_and_replay_in_order(self, tmp_path: Path) -> None:
        async with OutcomeLog(tmp_path / "outcomes.db") as log:
            for i in range(3):
                await log.append(TaskOutcome(f"t{i}", Pool.AI, Pool.AI, successful=True))
            outcomes = await log.recent()
            assert [o.task_id for o in outcomes] == ["t0", "t1", "t2"]
            assert await log.count() == 3

    @pytest.mark.anyio
    async def test_recent_respects_limit(self, tmp_path: Path) -> None:
        async with OutcomeLog(tmp_path / "outcomes.db") as log:
            for i in range(5):
                await log.append(TaskOutcome(f"t{i}", Pool.HUMAN, Pool.HUMAN))
            outcomes = await log.recent(limit=2)
            assert [o.task_id for o in outcomes] == ["t3", "t4"]

    @pytest.mark.anyio
    async def test_round_trips_routing_context(self, tmp_path: Path) -> None:
        outcome = TaskOutcome(
            "ctx",
            Pool.AI,
            Pool.HUMAN,
            was_reassigned=True,
            complexity=5.5,
            task_type="feature",
            tags=frozenset({"backend", "api"}),
            has_detailed_specs=False,
        )
        async with OutcomeLog(tmp_path / "outcomes.db") as log:
            await log.append(outcome)
            [stored] = await log.recent()
        assert stored == outcome

    @pytest.mark.anyio
    async def test_persists_across_connections(self, tmp_path: Path) -> None:
        path = tmp_path / "outcomes.db"
        async with OutcomeLog(path) as log:
            await log.append(TaskOutcome("keep", Pool.HYBRID, Pool.HYBRID, successful=True))
        async with OutcomeLog(path) as log:
            assert await log.count() == 1

    @pytest.mark.anyio
    async def test_summary_by_pool(self, tmp_path: Path) -> None:
        async with OutcomeLog(tmp_path / "outcomes.db") as log:
            await log.append(TaskOutcome("a", Pool.AI, Pool.AI, successful=True))
            await log.append(TaskOutcome("b", Pool.AI, Pool.HUMAN, was_reassigned=True))
            await log.append(TaskOutcome("c", Pool.HUMAN, Pool.HUMAN, failed=True))
            summary = await log.summary()
        assert summary["ai"] == {"total": 2, "clean_successes": 1, "reassigned": 1}
        assert summary["human"]["clean_successes"] == 0
