"""Routing Engine - one object wiring scorers, balancer and learner together.

Every operation reads the learner's current model at call time, so a batch
started before a recalibration finishes against the snapshot it began with.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from taskrouter.classification import ClassificationContext, classify_assignment
from taskrouter.config import EngineConfig, initial_model
from taskrouter.engine.balancer import WorkloadBalancer
from taskrouter.errors import InvalidInputError
from taskrouter.engine.workload import WorkloadSnapshot, WorkloadState
from taskrouter.feedback.learner import ModelListener, RoutingLearner
from taskrouter.models import (
    Assignment,
    ComplexityScore,
    PriorityScore,
    Recommendation,
    RoutingModel,
    TaskOutcome,
    TaskRequest,
)
from taskrouter.scoring import PriorityContext, calculate_priority, infer_task_type, score_complexity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutedTask:
    """What the engine remembers about an assigned task."""

    assignment: Assignment
    task_type: str
    tags: frozenset[str]
    has_detailed_specs: bool


class RoutingEngine:
    """
    Facade over the routing pipeline.

    Owns the WorkloadState, the WorkloadBalancer and the RoutingLearner.
    Assigned tasks are remembered until their outcome is recorded, so that
    outcomes reported with only a task id still carry complexity, type and
    tags into the learner.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        model: RoutingModel | None = None,
        state: WorkloadState | None = None,
        clock: Callable[[], datetime] | None = None,
        background: bool = True,
    ) -> None:
        self.config = config or EngineConfig()
        self.state = state or WorkloadState.from_config(self.config)
        self.balancer = WorkloadBalancer(self.config, clock=clock)
        self.learner = RoutingLearner(
            self.config, model=model or initial_model(self.config), background=background
        )
        self._routed: dict[str, RoutedTask] = {}
        self._released: set[str] = set()

    # Scoring --------------------------------------------------------------

    def current_model(self) -> RoutingModel:
        return self.learner.current_model()

    def score_complexity(self, task: TaskRequest) -> ComplexityScore:
        return score_complexity(task, self.current_model())

    def classify_assignment(
        self, task: TaskRequest, context: ClassificationContext | None = None
    ) -> Recommendation:
        return classify_assignment(task, context, self.current_model())

    def calculate_priority(
        self, task: TaskRequest, context: PriorityContext | None = None
    ) -> PriorityScore:
        context = context or PriorityContext()
        if context.weights is None:
            context = replace(context, weights=self.current_model().weights.priority)
        return calculate_priority(task, context)

    # Assignment -----------------------------------------------------------

    def assign_batch(
        self, tasks: Sequence[TaskRequest], context: PriorityContext | None = None
    ) -> list[Assignment]:
        """Assign a batch through the balancer and remember each task.

        Raises:
            InvalidInputError: a task id repeats within the batch or still
                holds capacity from an earlier assignment.
        """
        ids = Counter(task.id for task in tasks)
        repeated = sorted(task_id for task_id, n in ids.items() if n > 1)
        if repeated:
            raise InvalidInputError(
                "Duplicate task ids in batch", details={"task_ids": repeated}
            )
        active = sorted(task_id for task_id in ids if self._holds_capacity(task_id))
        if active:
            raise InvalidInputError(
                "Tasks are already assigned; release them first",
                details={"task_ids": active},
            )

        model = self.current_model()
        assignments = self.balancer.assign_batch(tasks, self.state, model, context)

        by_id = {task.id: task for task in tasks}
        for assignment in assignments:
            task = by_id[assignment.task_id]
            self._routed[task.id] = RoutedTask(
                assignment=assignment,
                task_type=infer_task_type(task),
                tags=task.tags,
                has_detailed_specs=task.has_detailed_specs,
            )
            self._released.discard(task.id)
        return assignments

    def routed(self, task_id: str) -> RoutedTask | None:
        """The remembered assignment for a task awaiting its outcome."""
        return self._routed.get(task_id)

    def _holds_capacity(self, task_id: str) -> bool:
        routed = self._routed.get(task_id)
        return (
            routed is not None
            and not routed.assignment.is_deferred
            and task_id not in self._released
        )

    def release(self, task_id: str) -> bool:
        """Free the capacity held by an assigned task.

        Returns:
            False when the task is unknown, deferred or already released.
        """
        if not self._holds_capacity(task_id):
            return False
        routed = self._routed[task_id]
        self.balancer.release(routed.assignment, self.state)
        self._released.add(task_id)
        logger.debug("Released %s from %s pool", task_id, routed.assignment.pool.value)
        return True

    def workload(self) -> WorkloadSnapshot:
        return self.state.snapshot()

    def reset_day(self) -> None:
        self.balancer.reset_day(self.state)

    # Feedback -------------------------------------------------------------

    def enrich_outcome(self, outcome: TaskOutcome) -> TaskOutcome:
        """Fill missing routing context from the task's assignment."""
        routed = self._routed.get(outcome.task_id)
        if routed is None:
            return outcome
        return replace(
            outcome,
            complexity=(
                outcome.complexity
                if outcome.complexity is not None
                else routed.assignment.complexity
            ),
            task_type=outcome.task_type or routed.task_type,
            tags=outcome.tags or routed.tags,
            has_detailed_specs=(
                outcome.has_detailed_specs
                if outcome.has_detailed_specs is not None
                else routed.has_detailed_specs
            ),
        )

    def record_outcome(self, outcome: TaskOutcome) -> None:
        """Feed an outcome to the learner and forget the finished task.

        Capacity the task still holds is released first.
        """
        enriched = self.enrich_outcome(outcome)
        self.release(outcome.task_id)
        self._routed.pop(outcome.task_id, None)
        self._released.discard(outcome.task_id)
        self.learner.record_outcome(enriched)

    def restore(self, outcomes: Iterable[TaskOutcome], outcome_count: int | None = None) -> None:
        """Replay persisted outcomes into the learner window."""
        self.learner.restore(outcomes, outcome_count)

    def on_publish(self, listener: ModelListener) -> None:
        self.learner.on_publish(listener)

    def recalibrate(self) -> RoutingModel | None:
        return self.learner.recalibrate()

    def wait(self) -> None:
        self.learner.wait()

    def close(self) -> None:
        self.learner.close()

    def __enter__(self) -> RoutingEngine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
