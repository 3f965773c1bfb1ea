"""FastAPI server for programmatic routing access."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

import click
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from taskrouter import __version__
from taskrouter.classification import ClassificationContext
from taskrouter.config import initial_model, load_config
from taskrouter.engine import RoutingEngine
from taskrouter.errors import InvalidInputError
from taskrouter.models import RoutingModel, TaskOutcome, TaskRequest
from taskrouter.scoring import PriorityContext
from taskrouter.storage import AssignmentStore, Database, ModelStore, OutcomeLog

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Router API",
    version=__version__,
    description="Capacity-aware routing of work to human and AI pools",
)

_start_time = time.monotonic()
_engine: RoutingEngine | None = None
_db: Database | None = None


async def get_engine() -> RoutingEngine:
    """Lazily build the process-wide engine from the data directory.

    The learner window is replayed from the outcome log, so recalibration
    resumes where the previous process stopped.
    """
    global _engine, _db
    if _engine is not None:
        return _engine

    db = Database()
    db.ensure_tables()
    models = ModelStore(db)
    config = load_config()
    engine = RoutingEngine(config, model=models.latest() or initial_model(config))
    async with OutcomeLog() as log:
        window = await log.recent(config.outcome_window)
        total = await log.count()

    # Another request finished building while this one awaited the log
    if _engine is not None:
        engine.close()
        return _engine

    engine.restore(window, outcome_count=total)
    engine.on_publish(models.save)
    logger.info("Replayed %d of %d logged outcomes", len(window), total)
    _engine, _db = engine, db
    return engine


async def _get_db() -> Database:
    await get_engine()
    assert _db is not None
    return _db


def reset_engine() -> None:
    """Drop the process-wide engine; the next request rebuilds it."""
    global _engine, _db
    if _engine is not None:
        _engine.close()
    _engine = None
    _db = None


@app.exception_handler(InvalidInputError)
async def invalid_input(request: Request, exc: InvalidInputError) -> JSONResponse:
    return JSONResponse(status_code=400, content=exc.to_dict())


def _task_from(request: dict[str, Any]) -> TaskRequest:
    return TaskRequest.from_dict(request.get("task", request))


def _priority_context(request: dict[str, Any]) -> PriorityContext:
    return PriorityContext(
        dependents={k: list(v) for k, v in request.get("dependents", {}).items()},
        blocked=frozenset(request.get("blocked", ())),
    )


@app.get("/api/health")
async def health() -> dict[str, Any]:
    """Health check."""
    uptime = time.monotonic() - _start_time
    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(uptime, 1),
        "model_version": (await get_engine()).current_model().version,
    }


@app.post("/api/score")
async def score(request: dict[str, Any]) -> dict[str, Any]:
    """Complexity score and classifier leaning for one task."""
    engine = await get_engine()
    task = _task_from(request)
    complexity = engine.score_complexity(task)
    leaning = engine.classify_assignment(
        task, ClassificationContext(complexity=complexity.total, task_type=complexity.task_type)
    )
    return {
        "task_id": task.id,
        "complexity": complexity.to_dict(),
        "classification": leaning.to_dict(),
        "model_version": engine.current_model().version,
    }


@app.post("/api/priority")
async def priority(request: dict[str, Any]) -> dict[str, Any]:
    """Priority score for one task, optionally with its dependency graph."""
    engine = await get_engine()
    task = _task_from(request)
    result = engine.calculate_priority(task, _priority_context(request))
    return {"task_id": task.id, **result.to_dict()}


@app.post("/api/assign")
async def assign(request: dict[str, Any]) -> dict[str, Any]:
    """Assign a batch of tasks against the live workload."""
    items = request.get("tasks")
    if not isinstance(items, list) or not items:
        raise InvalidInputError("tasks must be a non-empty list")
    tasks = [TaskRequest.from_dict(item) for item in items]

    engine = await get_engine()
    assignments = engine.assign_batch(tasks, _priority_context(request))
    model_version = engine.current_model().version
    AssignmentStore(await _get_db()).record(assignments, model_version)
    return {
        "assignments": [a.to_dict() for a in assignments],
        "deferred": sum(1 for a in assignments if a.is_deferred),
        "workload": engine.workload().to_dict(),
        "model_version": model_version,
    }


@app.post("/api/tasks/{task_id}/release")
async def release(task_id: str) -> dict[str, Any]:
    """Return the capacity held by a finished task."""
    engine = await get_engine()
    return {
        "task_id": task_id,
        "released": engine.release(task_id),
        "workload": engine.workload().to_dict(),
    }


@app.post("/api/outcomes")
async def outcomes(request: dict[str, Any]) -> dict[str, Any]:
    """Record completed-task outcomes and free any capacity they still hold.

    Recalibration runs in the background.
    """
    items = request.get("outcomes", [request])
    parsed = [TaskOutcome.from_dict(item) for item in items]

    engine = await get_engine()
    async with OutcomeLog() as log:
        for outcome in parsed:
            enriched = engine.enrich_outcome(outcome)
            await log.append(enriched)
            engine.record_outcome(enriched)
    return {"recorded": len(parsed), "model_version": engine.current_model().version}


@app.get("/api/model")
async def model() -> dict[str, Any]:
    """Current routing model snapshot."""
    current: RoutingModel = (await get_engine()).current_model()
    return current.to_dict()


@app.get("/api/workload")
async def workload() -> dict[str, Any]:
    """Live pool counters."""
    return (await get_engine()).workload().to_dict()


@app.get("/api/stream")
async def stream(events: int | None = None, interval: float = 3.0) -> StreamingResponse:
    """SSE feed of the serving model version and pool workload.

    Runs until the client disconnects, or for ``events`` messages when given.
    """
    if events is not None and events < 1:
        raise InvalidInputError("events must be positive", details={"events": events})
    if interval < 0:
        raise InvalidInputError("interval must not be negative", details={"interval": interval})
    engine = await get_engine()

    async def event_generator() -> AsyncGenerator[str, None]:
        last_version: int | None = None
        sent = 0
        while events is None or sent < events:
            current = engine.current_model()
            data = {
                "model_version": current.version,
                "model_changed": last_version is not None and current.version != last_version,
                "workload": engine.workload().to_dict(),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            last_version = current.version
            yield f"data: {json.dumps(data)}\n\n"
            sent += 1
            if events is None or sent < events:
                await asyncio.sleep(interval)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@click.command()
@click.option("--port", default=3850, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def main(port: int, host: str) -> None:
    """Start the Task Router API server."""
    import uvicorn

    from taskrouter.log import configure_logging

    configure_logging()
    uvicorn.run(app, host=host, port=port)
