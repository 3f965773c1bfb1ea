"""Priority Calculator - business urgency and value on a 0-10 scale.

Independent of who does the work. Reads the dependency graph from a
PriorityContext and never mutates shared state.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Final, Mapping, Sequence

from ..models import (
    DEFAULT_PRIORITY_WEIGHTS,
    PriorityLevel,
    PriorityScore,
    RoutingModel,
    TaskRequest,
)
from .complexity_analyzer import count_signals, score_complexity

# Level cut points, highest first
LEVEL_CUTOFFS: Final[list[tuple[float, PriorityLevel]]] = [
    (8.5, PriorityLevel.CRITICAL),
    (7.0, PriorityLevel.HIGH),
    (4.0, PriorityLevel.MEDIUM),
]

CRITICAL_CUTOFF: Final[float] = LEVEL_CUTOFFS[0][0]
MAX_SCORE: Final[float] = 10.0

# Calendar days remaining -> urgency, first matching bucket wins.
# Due today, tomorrow or overdue is the top bucket.
DEADLINE_BUCKETS: Final[list[tuple[int, float]]] = [
    (2, 10.0),
    (3, 8.0),
    (7, 6.0),
]

VALUE_TAGS: Final[dict[str, float]] = {
    "revenue": 3.0,
    "customer-facing": 3.0,
    "strategic": 2.0,
    "internal": -2.0,
}

RISK_TAGS: Final[dict[str, float]] = {
    "security": 4.0,
    "compliance": 3.0,
    "customer-facing": 3.0,
    "revenue": 2.0,
    "tech-debt": 1.0,
}

RISK_KEYWORDS: Final[list[str]] = [
    "outage", "incident", "vulnerab", "data loss", "security", "crash", "regression",
]


@dataclass(frozen=True)
class PriorityContext:
    """Live pipeline state the priority depends on.

    Attributes:
        dependents: task id -> ids of tasks waiting on it
        blocked: ids of tasks currently blocked
        now: reference time for deadline math
        complexity: complexity total when already known
        weights: factor weights, usually from the current model
    """

    dependents: Mapping[str, Sequence[str]] = field(default_factory=dict)
    blocked: frozenset[str] = frozenset()
    now: datetime | None = None
    complexity: float | None = None
    weights: Mapping[str, float] | None = None


def _clamp(value: float) -> float:
    return max(0.0, min(10.0, value))


def priority_level(total: float) -> PriorityLevel:
    """Monotonic mapping from score to level."""
    for cutoff, level in LEVEL_CUTOFFS:
        if total >= cutoff:
            return level
    return PriorityLevel.LOW


def calendar_days_until(deadline: datetime, now: datetime) -> int:
    """Whole calendar days from now to the deadline, in the clock's timezone.

    When only one side carries a timezone both are compared in local time.
    """
    if deadline.tzinfo is not None and now.tzinfo is not None:
        deadline = deadline.astimezone(now.tzinfo)
    elif deadline.tzinfo is not None:
        deadline = deadline.astimezone().replace(tzinfo=None)
    elif now.tzinfo is not None:
        now = now.astimezone().replace(tzinfo=None)
    return (deadline.date() - now.date()).days


def transitive_dependents(task_id: str, dependents: Mapping[str, Sequence[str]]) -> set[str]:
    """Every task that waits on task_id directly or indirectly."""
    seen: set[str] = set()
    queue = deque(dependents.get(task_id, ()))
    while queue:
        current = queue.popleft()
        if current in seen or current == task_id:
            continue
        seen.add(current)
        queue.extend(dependents.get(current, ()))
    return seen


# ═══════════════════════════════════════════════════════════════════════════
# FACTOR SCORES
# ═══════════════════════════════════════════════════════════════════════════


def score_business_value(task: TaskRequest) -> float:
    score = 4.0
    for tag, bonus in VALUE_TAGS.items():
        if tag in task.tags:
            score += bonus

    revenue = task.estimated_revenue or 0.0
    if revenue >= 100_000:
        score += 3.0
    elif revenue >= 10_000:
        score += 2.0
    elif revenue > 0:
        score += 1.0

    users = task.affected_users or 0
    if users >= 10_000:
        score += 3.0
    elif users >= 1_000:
        score += 2.0
    elif users >= 100:
        score += 1.0
    return _clamp(score)


def score_urgency(task: TaskRequest, context: PriorityContext, now: datetime) -> float:
    score = 5.0
    if task.deadline is not None:
        days = calendar_days_until(task.deadline, now)
        for limit, bucket_score in DEADLINE_BUCKETS:
            if days < limit:
                score = bucket_score
                break
    if task.external_deadline:
        score += 2.0
    if context.dependents.get(task.id):
        score += 3.0
    return _clamp(score)


def score_dependency_impact(task: TaskRequest, context: PriorityContext) -> float:
    blocked_by_count = len(context.dependents.get(task.id, ()))
    impact = 0.0
    if context.blocked:
        waiting = transitive_dependents(task.id, context.dependents)
        impact = len(waiting & context.blocked) / len(context.blocked)
    return _clamp(5.0 + min(blocked_by_count, 3) + 2.0 * impact)


def score_quick_win(complexity: float) -> float:
    return _clamp(10.0 - complexity)


def score_risk_reduction(task: TaskRequest) -> float:
    score = 4.0
    for tag, bonus in RISK_TAGS.items():
        if tag in task.tags:
            score += bonus
    lower = task.description.lower() if task.description else ""
    if any(keyword in lower for keyword in RISK_KEYWORDS):
        score += 2.0
    if count_signals(lower, "bugfix"):
        score += 1.0
    return _clamp(score)


# ═══════════════════════════════════════════════════════════════════════════
# MAIN PRIORITY SCORING
# ═══════════════════════════════════════════════════════════════════════════


def calculate_priority(task: TaskRequest, context: PriorityContext | None = None) -> PriorityScore:
    """Score a task's priority.

    Args:
        task: Task to score
        context: Dependency graph, blocked set, clock and optional weights

    Returns:
        PriorityScore whose reasoning names the two largest weighted factors
    """
    context = context or PriorityContext()
    now = context.now or datetime.now(timezone.utc)
    weights = context.weights or DEFAULT_PRIORITY_WEIGHTS

    complexity = context.complexity
    if complexity is None:
        complexity = score_complexity(task, RoutingModel()).total

    breakdown = {
        "business_value": round(score_business_value(task), 2),
        "urgency": round(score_urgency(task, context, now), 2),
        "dependency_impact": round(score_dependency_impact(task, context), 2),
        "complexity": round(score_quick_win(complexity), 2),
        "risk_reduction": round(score_risk_reduction(task), 2),
    }
    contributions = {name: breakdown[name] * weights.get(name, 0.0) for name in breakdown}
    total = round(_clamp(sum(contributions.values())), 2)

    # sorted() is stable, so equal contributions keep factor declaration order
    top = sorted(contributions, key=lambda name: contributions[name], reverse=True)[:2]
    reasoning = (
        f"Driven by {top[0]} ({breakdown[top[0]]:.1f}) "
        f"and {top[1]} ({breakdown[top[1]]:.1f})"
    )

    # Top-value work due by tomorrow is critical whatever its size
    if (
        breakdown["business_value"] >= MAX_SCORE
        and task.deadline is not None
        and calendar_days_until(task.deadline, now) < DEADLINE_BUCKETS[0][0]
        and total < CRITICAL_CUTOFF
    ):
        total = CRITICAL_CUTOFF
        reasoning += "; top-value work due by tomorrow"

    return PriorityScore(
        total=total,
        level=priority_level(total),
        breakdown=breakdown,
        reasoning=reasoning,
    )
