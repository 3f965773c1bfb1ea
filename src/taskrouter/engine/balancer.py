"""Workload Balancer - capacity-aware pool assignment for task batches.

Scoring formula per candidate pool:
    score = availability * 0.4 + suitability * 0.6

Tasks are assigned strictly in priority order inside the WorkloadState's
exclusive section, so later tasks in a batch see the capacity taken by
earlier ones.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from taskrouter.classification import ClassificationContext, classify_assignment
from taskrouter.config import EngineConfig
from taskrouter.engine.workload import CapacityLedger, WorkloadState
from taskrouter.models import (
    AssigneeCategory,
    Assignment,
    AssignmentStatus,
    ComplexityScore,
    Pool,
    PriorityLevel,
    PriorityScore,
    Recommendation,
    RoutingModel,
    TaskRequest,
)
from taskrouter.scoring.complexity_analyzer import neutral_complexity, score_complexity
from taskrouter.scoring.priority_calculator import PriorityContext, calculate_priority

logger = logging.getLogger(__name__)

# Synthetic hybrid candidate
HYBRID_COMPLEXITY_FLOOR = 6.0
HYBRID_HOURS_FLOOR = 4.0
HYBRID_SUITABILITY = 0.9

OFF_HOURS_FACTOR = 0.5

# Candidate order also breaks score ties
CANDIDATE_ORDER = (Pool.HUMAN, Pool.AI, Pool.HYBRID)


@dataclass(frozen=True)
class ScoredTask:
    """Per-task scores computed before the assignment loop."""

    index: int
    task: TaskRequest
    complexity: ComplexityScore
    priority: PriorityScore


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def pool_suitability(leaning: Recommendation) -> dict[Pool, float]:
    """Normalize a recommendation's confidence onto the human and ai pools.

    The aligned pool gets 0.5 + c/2, the other 0.5 - c/2; a hybrid leaning
    (or zero confidence) is neutral.
    """
    half = leaning.confidence / 2
    if leaning.assignee is AssigneeCategory.HUMAN:
        return {Pool.HUMAN: 0.5 + half, Pool.AI: 0.5 - half}
    if leaning.assignee in (AssigneeCategory.AUTOMATED, AssigneeCategory.AUTOMATED_WITH_REVIEW):
        return {Pool.HUMAN: 0.5 - half, Pool.AI: 0.5 + half}
    return {Pool.HUMAN: 0.5, Pool.AI: 0.5}


class WorkloadBalancer:
    """
    Scheduler core: priority ordering, pool scoring and admission control.

    Given an identical batch, starting state, model and clock reading,
    assign_batch returns an identical sequence of assignments.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc).astimezone())

    # Availability ---------------------------------------------------------

    def time_of_day_factor(self, now: datetime) -> float:
        if self.config.workday_start <= now.hour < self.config.workday_end:
            return 1.0
        return OFF_HOURS_FACTOR

    def human_availability(self, state: WorkloadState, now: datetime) -> float:
        task_room = 1 - state.human_active / state.max_human_tasks
        hour_room = 1 - state.hours_worked_today / state.max_human_hours_per_day
        return _clamp_unit(
            0.5 * _clamp_unit(task_room)
            + 0.3 * _clamp_unit(hour_room)
            + 0.2 * self.time_of_day_factor(now)
        )

    def ai_availability(self, state: WorkloadState) -> float:
        task_room = 1 - state.ai_active / state.max_ai_tasks
        call_room = 1 - state.api_calls_today / state.api_call_limit
        return _clamp_unit(0.7 * _clamp_unit(task_room) + 0.3 * _clamp_unit(call_room))

    # Isolated scoring -----------------------------------------------------

    def _score_task(
        self, index: int, task: TaskRequest, context: PriorityContext, model: RoutingModel
    ) -> ScoredTask:
        try:
            complexity = score_complexity(task, model)
        except Exception:
            logger.exception("Complexity scoring failed for task %s", task.id)
            complexity = neutral_complexity(task, model, "Complexity scoring failed")

        try:
            priority = calculate_priority(task, replace(context, complexity=complexity.total))
        except Exception:
            logger.exception("Priority scoring failed for task %s", task.id)
            priority = PriorityScore(
                total=5.0,
                level=PriorityLevel.MEDIUM,
                breakdown={},
                reasoning="Priority scoring failed; using neutral priority",
            )
        return ScoredTask(index=index, task=task, complexity=complexity, priority=priority)

    def _classify(
        self, scored: ScoredTask, model: RoutingModel
    ) -> Recommendation:
        try:
            return classify_assignment(
                scored.task,
                ClassificationContext(
                    complexity=scored.complexity.total, task_type=scored.complexity.task_type
                ),
                model,
            )
        except Exception:
            logger.exception("Classification failed for task %s", scored.task.id)
            return Recommendation(AssigneeCategory.HYBRID, 0.0, "Classification failed")

    # Assignment -----------------------------------------------------------

    def assign_batch(
        self,
        tasks: Sequence[TaskRequest],
        state: WorkloadState,
        model: RoutingModel,
        context: PriorityContext | None = None,
    ) -> list[Assignment]:
        """
        Assign a batch of tasks to pools.

        Args:
            tasks: Tasks in submission order
            state: Live workload counters, mutated in place
            model: Current routing model snapshot
            context: Dependency graph and blocked set for priority scoring

        Returns:
            Assignments in processing (priority) order, deferred entries included
        """
        now = self.clock()
        context = replace(
            context or PriorityContext(), now=now, weights=model.weights.priority
        )

        scored = [
            self._score_task(index, task, context, model) for index, task in enumerate(tasks)
        ]
        # Stable sort keeps submission order between equal priorities
        scored.sort(key=lambda s: -s.priority.total)

        assignments: list[Assignment] = []
        with state.exclusive() as ledger:
            for item in scored:
                assignments.append(self._assign_one(item, ledger, model, now))
        return assignments

    def _assign_one(
        self, scored: ScoredTask, ledger: CapacityLedger, model: RoutingModel, now: datetime
    ) -> Assignment:
        task = scored.task
        classification = self._classify(scored, model)
        complexity_rec = scored.complexity.recommendation
        leaning = (
            classification
            if classification.confidence >= complexity_rec.confidence
            else complexity_rec
        )

        state = ledger.state
        availability = {
            Pool.HUMAN: self.human_availability(state, now),
            Pool.AI: self.ai_availability(state),
        }
        suitability = pool_suitability(leaning)

        hours = task.estimated_hours
        if (
            scored.complexity.total > HYBRID_COMPLEXITY_FLOOR
            and hours is not None
            and hours > HYBRID_HOURS_FLOOR
        ):
            availability[Pool.HYBRID] = min(availability[Pool.HUMAN], availability[Pool.AI])
            suitability[Pool.HYBRID] = HYBRID_SUITABILITY

        weights = model.weights
        candidates = {
            pool: weights.availability * availability[pool] + weights.suitability * suitability[pool]
            for pool in CANDIDATE_ORDER
            if pool in availability
        }

        winner = CANDIDATE_ORDER[0]
        for pool in CANDIDATE_ORDER:
            if pool in candidates and candidates[pool] > candidates[winner]:
                winner = pool
        score = round(candidates[winner], 3)
        detail = (
            f"{winner.value} score {score:.3f} "
            f"(availability {availability[winner]:.2f}, suitability {suitability[winner]:.2f})"
        )

        if ledger.at_capacity(winner):
            logger.info("Deferring task %s: %s pool at capacity", task.id, winner.value)
            return Assignment(
                task_id=task.id,
                pool=winner,
                status=AssignmentStatus.DEFERRED,
                scheduled_start=None,
                confidence=score,
                reason=f"{winner.value} pool at capacity; queued. {leaning.reason}; {detail}",
                priority=scored.priority.total,
                complexity=scored.complexity.total,
            )

        task_hours = hours if hours is not None else self.config.default_task_hours
        reserved_hours = 0.0
        api_calls = 0
        if winner is Pool.HUMAN:
            reserved_hours = task_hours
        elif winner is Pool.HYBRID:
            reserved_hours = task_hours / 2
        if winner in (Pool.AI, Pool.HYBRID):
            api_calls = self.config.api_calls_per_task

        ledger.reserve(winner, hours=reserved_hours, api_calls=api_calls)
        return Assignment(
            task_id=task.id,
            pool=winner,
            status=AssignmentStatus.ASSIGNED,
            scheduled_start=now,
            confidence=score,
            reason=f"{leaning.reason}; {detail}",
            priority=scored.priority.total,
            complexity=scored.complexity.total,
            reserved_hours=reserved_hours,
        )

    # Capacity maintenance -------------------------------------------------

    def release(self, assignment: Assignment, state: WorkloadState) -> None:
        """Return capacity held by a finished task. Deferred entries hold none."""
        if assignment.is_deferred:
            return
        with state.exclusive() as ledger:
            ledger.release(assignment.pool)

    def reset_day(self, state: WorkloadState) -> None:
        with state.exclusive() as ledger:
            ledger.reset_day()
