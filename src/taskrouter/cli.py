"""CLI entry point for the task router."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from datetime import datetime
from typing import IO, TYPE_CHECKING, Any, NoReturn

import click
from rich.console import Console
from rich.table import Table

from taskrouter import __version__
from taskrouter.errors import InvalidInputError
from taskrouter.log import configure_logging

if TYPE_CHECKING:
    from taskrouter.models import Assignment, RoutingModel
    from taskrouter.scoring import PriorityContext
    from taskrouter.storage import Database

console = Console()

POOL_STYLE = {"human": "magenta", "ai": "cyan", "hybrid": "yellow"}


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise SystemExit(2)


def _read_json(stream: IO[str]) -> Any:
    try:
        return json.load(stream)
    except json.JSONDecodeError as exc:
        _fail(f"Invalid JSON in {stream.name}: {exc}")


def _open_db() -> Database:
    from taskrouter.storage import Database

    db = Database()
    db.ensure_tables()
    return db


def _current_model(db: Database) -> RoutingModel:
    from taskrouter.config import initial_model, load_config
    from taskrouter.storage import ModelStore

    return ModelStore(db).latest() or initial_model(load_config())


def _priority_context(payload: dict[str, Any]) -> PriorityContext:
    from taskrouter.scoring import PriorityContext

    return PriorityContext(
        dependents={k: list(v) for k, v in payload.get("dependents", {}).items()},
        blocked=frozenset(payload.get("blocked", ())),
    )


@click.group()
@click.version_option(version=__version__, prog_name="route")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
def main(verbose: bool) -> None:
    """Task Router: capacity-aware routing of work to human and AI pools."""
    configure_logging(verbose)


@main.command()
def init() -> None:
    """Create the data directory, database and default config."""
    from taskrouter.config import CONFIG_FILENAME, EngineConfig, initial_model, load_config
    from taskrouter.storage import ModelStore

    db = _open_db()
    config_path = db.data_dir / CONFIG_FILENAME
    if not config_path.exists():
        with config_path.open("w") as f:
            json.dump(asdict(EngineConfig()), f, indent=2)

    store = ModelStore(db)
    if store.latest() is None:
        store.save(initial_model(load_config(config_path)), reason="init")

    console.print(f"[green]Task router initialized at {db.data_dir}[/green]")
    console.print(f"  Database: {db.db_path}")
    console.print(f"  Config:   {config_path}")


@main.command()
@click.argument("description")
@click.option("--tag", "tags", multiple=True, help="Task tag (repeatable)")
@click.option("--specs", is_flag=True, help="Task has detailed specs")
@click.option("--patterns", is_flag=True, help="Similar work has been done before")
@click.option("--hours", type=float, default=None, help="Estimated hours")
@click.option("--files", type=int, default=None, help="Estimated files touched")
@click.option("--domain", default=None, help="Business domain")
@click.option("--deadline", default=None, help="ISO-8601 deadline")
def score(
    description: str,
    tags: tuple[str, ...],
    specs: bool,
    patterns: bool,
    hours: float | None,
    files: int | None,
    domain: str | None,
    deadline: str | None,
) -> None:
    """Score a task's complexity, leaning and priority."""
    from taskrouter.classification import ClassificationContext, classify_assignment
    from taskrouter.models import TaskRequest
    from taskrouter.scoring import PriorityContext, calculate_priority, score_complexity

    try:
        task = TaskRequest.from_dict(
            {
                "id": "cli",
                "description": description,
                "tags": list(tags),
                "has_detailed_specs": specs,
                "has_existing_patterns": patterns,
                "estimated_hours": hours,
                "estimated_files": files,
                "domain": domain,
                "deadline": deadline,
            }
        )
    except InvalidInputError as exc:
        _fail(exc.message)

    model = _current_model(_open_db())
    complexity = score_complexity(task, model)
    leaning = classify_assignment(
        task,
        ClassificationContext(complexity=complexity.total, task_type=complexity.task_type),
        model,
    )
    priority = calculate_priority(
        task, PriorityContext(complexity=complexity.total, weights=model.weights.priority)
    )

    table = Table(title=f"Complexity {complexity.total:.1f} ({complexity.task_type})")
    table.add_column("Factor", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Weight", justify="right")
    for factor, value in complexity.breakdown.items():
        table.add_row(factor, f"{value:.1f}", f"{model.weights.complexity[factor]:.2f}")
    console.print(table)

    rec = complexity.recommendation
    console.print(
        f"[bold]Recommendation:[/bold] {rec.assignee.value} ({rec.confidence:.0%}) - {rec.reason}"
    )
    console.print(
        f"[bold]Classifier:[/bold] {leaning.assignee.value} ({leaning.confidence:.0%})"
    )
    console.print(f"  [dim]{leaning.reason}[/dim]")
    console.print(
        f"[bold]Priority:[/bold] {priority.total:.2f} {priority.level.value} - {priority.reasoning}"
    )


@main.command()
@click.argument("tasks_file", type=click.File("r"))
@click.option("--human-active", default=0, help="Tasks already held by the human pool")
@click.option("--ai-active", default=0, help="Tasks already held by the AI pool")
@click.option("--hours-worked", default=0.0, help="Human hours already worked today")
@click.option("--api-calls", default=0, help="API calls already made today")
def assign(
    tasks_file: IO[str],
    human_active: int,
    ai_active: int,
    hours_worked: float,
    api_calls: int,
) -> None:
    """Assign a batch of tasks from a JSON file.

    The file holds a list of tasks, or an object with "tasks" plus optional
    "dependents" (task id -> waiting task ids) and "blocked".
    """
    from taskrouter.config import load_config
    from taskrouter.engine import RoutingEngine, WorkloadState
    from taskrouter.models import TaskRequest
    from taskrouter.storage import AssignmentStore

    payload = _read_json(tasks_file)
    if isinstance(payload, list):
        payload = {"tasks": payload}
    try:
        tasks = [TaskRequest.from_dict(item) for item in payload.get("tasks", [])]
    except InvalidInputError as exc:
        _fail(exc.message)
    if not tasks:
        console.print("[dim]No tasks to assign.[/dim]")
        return

    config = load_config()
    try:
        state = WorkloadState.from_config(
            config,
            human_active=human_active,
            ai_active=ai_active,
            hours_worked_today=hours_worked,
            api_calls_today=api_calls,
        )
    except ValueError as exc:
        _fail(str(exc))

    db = _open_db()
    with RoutingEngine(config, model=_current_model(db), state=state, background=False) as engine:
        try:
            assignments = engine.assign_batch(tasks, _priority_context(payload))
        except InvalidInputError as exc:
            ids = ", ".join(exc.details.get("task_ids", []))
            _fail(f"{exc.message}: {ids}")
        AssignmentStore(db).record(assignments, engine.current_model().version)
        workload = engine.workload()

    _print_assignments(assignments)
    console.print(
        f"\nHuman: {workload.human_active}/{workload.max_human_tasks} | "
        f"AI: {workload.ai_active}/{workload.max_ai_tasks} | "
        f"Hours today: {workload.hours_worked_today:.1f}/{workload.max_human_hours_per_day:.1f}"
    )


@main.command()
@click.argument("outcomes_file", type=click.File("r"))
@click.option("--full", is_flag=True, help="Run a full recompute even below the batch size")
def record(outcomes_file: IO[str], full: bool) -> None:
    """Record task outcomes and update the routing model.

    A full recompute runs once a recalibration batch has accumulated since
    the last one. Below that, reassignments and failures only refresh pool
    accuracy.
    """
    from taskrouter.config import load_config
    from taskrouter.feedback import RoutingLearner
    from taskrouter.models import TaskOutcome
    from taskrouter.storage import ModelStore, OutcomeLog

    payload = _read_json(outcomes_file)
    if isinstance(payload, dict):
        payload = payload.get("outcomes", [payload])
    try:
        outcomes = [TaskOutcome.from_dict(item) for item in payload]
    except InvalidInputError as exc:
        _fail(exc.message)

    config = load_config()

    async def _append_and_load() -> tuple[list[TaskOutcome], int]:
        async with OutcomeLog() as log:
            for outcome in outcomes:
                await log.append(outcome)
            return await log.recent(config.outcome_window), await log.count()

    window, total = asyncio.run(_append_and_load())
    console.print(f"Recorded {len(outcomes)} outcome(s); {total} in log.")

    db = _open_db()
    store = ModelStore(db)
    with RoutingLearner(config, model=_current_model(db), background=False) as learner:
        learner.restore(window, outcome_count=total)
        pending = learner.outcomes_since_recalibration
        if full or pending >= config.recalibration_batch_size:
            published = learner.recalibrate()
            if published is None:
                console.print(
                    f"[yellow]Model unchanged.[/yellow] Recalibration needs "
                    f"{config.min_outcomes_for_recalibration}+ valid outcomes."
                )
                return
        elif any(outcome.significant for outcome in outcomes):
            published = learner.adjust_accuracy()
        else:
            published = None

    if published is None:
        console.print(
            f"[dim]Model unchanged; {pending}/{config.recalibration_batch_size} outcomes "
            f"toward the next recalibration.[/dim]"
        )
        return

    store.save(published)
    t = published.thresholds
    console.print(
        f"[green]Published model v{published.version}[/green] "
        f"(ai_max {t.ai_max:.1f}, review_max {t.review_max:.1f}, human_min {t.human_min:.1f}, "
        f"{len(published.patterns)} patterns)"
    )


@main.command()
@click.option("--rollback", is_flag=True, help="Restore the previous model snapshot")
@click.option("--json", "as_json", is_flag=True, help="Print the model as JSON")
def model(rollback: bool, as_json: bool) -> None:
    """Show the current routing model."""
    from taskrouter.storage import ModelStore

    db = _open_db()
    if rollback:
        restored = ModelStore(db).rollback()
        if restored is None:
            console.print("[dim]No previous model to roll back to.[/dim]")
            return
        console.print(f"[green]Rolled back; now serving model v{restored.version}.[/green]")

    current = _current_model(db)
    if as_json:
        click.echo(json.dumps(current.to_dict(), indent=2))
        return

    t = current.thresholds
    console.print(f"[bold]Model v{current.version}[/bold] ({current.outcome_count} outcomes)")
    console.print(
        f"Thresholds: ai_max {t.ai_max:.1f} | review_max {t.review_max:.1f} | "
        f"human_min {t.human_min:.1f}"
    )
    console.print(
        "Accuracy: "
        + " | ".join(f"{pool} {value:.0%}" for pool, value in current.accuracy.items())
    )

    table = Table(title="Leaf Confidences")
    table.add_column("Leaf", style="cyan")
    table.add_column("Confidence", justify="right")
    for leaf, value in current.leaf_confidences.items():
        table.add_row(leaf, f"{value:.2f}")
    console.print(table)

    if current.patterns:
        patterns = Table(title="Learned Patterns")
        patterns.add_column("Signature", style="cyan")
        patterns.add_column("Pool")
        patterns.add_column("Confidence", justify="right")
        patterns.add_column("Seen", justify="right")
        for p in current.patterns[:10]:
            patterns.add_row(p.signature, p.assignee.value, f"{p.confidence:.2f}", str(p.occurrences))
        console.print(patterns)


@main.command()
@click.option("--limit", default=20, help="Number of entries to show")
def history(limit: int) -> None:
    """Show recent assignments."""
    from taskrouter.storage import AssignmentStore

    rows = AssignmentStore(_open_db()).recent(limit)
    if not rows:
        console.print("[dim]No assignments yet. Run `route assign` first.[/dim]")
        return

    table = Table(title="Assignment History")
    table.add_column("Task", style="cyan")
    table.add_column("Pool")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Complexity", justify="right")
    table.add_column("Model", justify="right")
    table.add_column("Date")

    for row in rows:
        pool = row["pool"]
        table.add_row(
            str(row["task_id"])[:24],
            f"[{POOL_STYLE.get(pool, 'white')}]{pool}[/]",
            row["status"],
            f"{row['priority']:.2f}",
            f"{row['complexity']:.1f}",
            f"v{row['model_version']}",
            str(row["assigned_at"])[:16],
        )
    console.print(table)


def _print_assignments(assignments: list[Assignment]) -> None:
    table = Table(title="Assignments")
    table.add_column("Task", style="cyan")
    table.add_column("Pool")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Complexity", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Start")

    for a in assignments:
        status = "[yellow]deferred[/yellow]" if a.is_deferred else "[green]assigned[/green]"
        start = a.scheduled_start.strftime("%H:%M") if isinstance(a.scheduled_start, datetime) else "-"
        table.add_row(
            a.task_id,
            f"[{POOL_STYLE[a.pool.value]}]{a.pool.value}[/]",
            status,
            f"{a.priority:.2f}",
            f"{a.complexity:.1f}",
            f"{a.confidence:.2f}",
            start,
        )
    console.print(table)
