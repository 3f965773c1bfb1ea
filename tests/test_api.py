"""Tests for the FastAPI server."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
from httpx import ASGITransport, AsyncClient

from taskrouter.api import server
from taskrouter.api.server import app
from taskrouter.models import Pool, TaskOutcome
from taskrouter.storage import OutcomeLog

CRUD = {"id": "crud", "description": "implement CRUD endpoint", "has_detailed_specs": True}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def fresh_engine() -> Iterator[None]:
    server.reset_engine()
    yield
    server.reset_engine()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.anyio
async def test_health() -> None:
    async with _client() as client:
        response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["model_version"] == 1
    assert "uptime_seconds" in data


@pytest.mark.anyio
async def test_score() -> None:
    async with _client() as client:
        response = await client.post("/api/score", json={"task": CRUD})
    assert response.status_code == 200
    data = response.json()
    assert data["task_id"] == "crud"
    assert data["complexity"]["total"] <= 3.0
    assert data["complexity"]["recommendation"]["assignee"] == "automated"
    assert data["classification"]["pool"] == "ai"


@pytest.mark.anyio
async def test_score_missing_id_is_bad_request() -> None:
    async with _client() as client:
        response = await client.post("/api/score", json={"description": "no id"})
    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "ROUTING-InvalidInput"
    assert "error" in data


@pytest.mark.anyio
async def test_priority_with_dependents() -> None:
    payload = {
        "task": {"id": "base", "description": "Add retry to job runner"},
        "dependents": {"base": ["x", "y"]},
        "blocked": ["x", "y"],
    }
    async with _client() as client:
        response = await client.post("/api/priority", json=payload)
    assert response.status_code == 200
    data = response.json()
    assert data["task_id"] == "base"
    assert data["level"] in {"low", "medium", "high", "critical"}
    assert data["breakdown"]["dependency_impact"] > 0


@pytest.mark.anyio
async def test_assign_updates_workload() -> None:
    async with _client() as client:
        response = await client.post("/api/assign", json={"tasks": [CRUD]})
        assert response.status_code == 200
        data = response.json()
        workload = (await client.get("/api/workload")).json()

    [assignment] = data["assignments"]
    assert assignment["pool"] == "ai"
    assert assignment["status"] == "assigned"
    assert data["deferred"] == 0
    assert workload["ai"]["active"] == 1


@pytest.mark.anyio
async def test_assign_requires_tasks() -> None:
    async with _client() as client:
        response = await client.post("/api/assign", json={"tasks": []})
    assert response.status_code == 400
    assert response.json()["code"] == "ROUTING-InvalidInput"


@pytest.mark.anyio
async def test_release_frees_capacity() -> None:
    async with _client() as client:
        await client.post("/api/assign", json={"tasks": [CRUD]})
        first = (await client.post("/api/tasks/crud/release")).json()
        second = (await client.post("/api/tasks/crud/release")).json()

    assert first["released"] is True
    assert first["workload"]["ai"]["active"] == 0
    assert second["released"] is False


@pytest.mark.anyio
async def test_outcomes_are_recorded() -> None:
    async with _client() as client:
        await client.post("/api/assign", json={"tasks": [CRUD]})
        response = await client.post(
            "/api/outcomes",
            json={
                "outcomes": [
                    {"task_id": "crud", "original_assignee": "ai", "successful": True}
                ]
            },
        )
    assert response.status_code == 200
    assert response.json()["recorded"] == 1


@pytest.mark.anyio
async def test_outcome_with_unknown_pool_is_rejected() -> None:
    async with _client() as client:
        response = await client.post(
            "/api/outcomes", json={"task_id": "x", "original_assignee": "robot"}
        )
    assert response.status_code == 400


@pytest.mark.anyio
async def test_model() -> None:
    async with _client() as client:
        response = await client.get("/api/model")
    assert response.status_code == 200
    data = response.json()
    assert data["version"] == 1
    assert data["thresholds"] == {"ai_max": 3.0, "review_max": 5.0, "human_min": 7.0}
    assert "routine_clear" in data["leaf_confidences"]


@pytest.mark.anyio
async def test_outcome_releases_capacity() -> None:
    async with _client() as client:
        await client.post("/api/assign", json={"tasks": [CRUD]})
        await client.post(
            "/api/outcomes",
            json={"task_id": "crud", "original_assignee": "ai", "successful": True},
        )
        workload = (await client.get("/api/workload")).json()
        again = await client.post("/api/assign", json={"tasks": [CRUD]})
    assert workload["ai"]["active"] == 0
    assert again.status_code == 200


@pytest.mark.anyio
async def test_assign_rejects_duplicate_ids() -> None:
    async with _client() as client:
        response = await client.post("/api/assign", json={"tasks": [CRUD, CRUD]})
    assert response.status_code == 400
    assert response.json()["details"]["task_ids"] == ["crud"]


@pytest.mark.anyio
async def test_stream_emits_model_and_workload_events() -> None:
    async with _client() as client:
        await client.post("/api/assign", json={"tasks": [CRUD]})
        response = await client.get("/api/stream", params={"events": 2, "interval": 0})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]
    assert len(events) == 2
    assert events[0]["model_version"] == 1
    assert events[0]["workload"]["ai"]["active"] == 1
    assert events[1]["model_changed"] is False
    assert "timestamp" in events[1]


@pytest.mark.anyio
async def test_stream_rejects_non_positive_event_count() -> None:
    async with _client() as client:
        response = await client.get("/api/stream", params={"events": 0})
    assert response.status_code == 400


@pytest.mark.anyio
async def test_engine_replays_outcome_log_on_start() -> None:
    async with OutcomeLog() as log:
        for i in range(10):
            await log.append(
                TaskOutcome(
                    f"past-{i}",
                    Pool.AI,
                    Pool.AI,
                    successful=True,
                    complexity=2.0,
                    task_type="routine",
                )
            )

    engine = await server.get_engine()
    assert engine.learner.window_size == 10
    assert engine.learner.outcomes_since_recalibration == 10

    model = engine.recalibrate()
    assert model is not None
    assert model.outcome_count == 10
    assert model.calibrated_through == 10
