"""Tests for workload state, the balancer and the engine facade."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from taskrouter.config import EngineConfig
from taskrouter.engine import RoutingEngine, WorkloadBalancer, WorkloadState, pool_suitability
from taskrouter.errors import ConcurrencyViolationError, InvalidInputError
from taskrouter.models import (
    AssigneeCategory,
    AssignmentStatus,
    Pool,
    Recommendation,
    RoutingModel,
    TaskOutcome,
    TaskRequest,
)

WORKDAY_MORNING = datetime(2026, 3, 2, 10, 0, 0)

NOVEL_ALGORITHM = TaskRequest(
    id="novel",
    description="design novel recommendation algorithm from scratch",
    tags=frozenset({"creative"}),
)

CRUD = TaskRequest(id="crud", description="implement CRUD endpoint", has_detailed_specs=True)

# Complexity ~6.4, patterned creative work, long enough for a hybrid pairing
PAIRED = TaskRequest(
    id="paired",
    description="Design distributed caching system for payment integration",
    tags=frozenset({"creative", "integration", "security"}),
    domain="security",
    estimated_files=8,
    estimated_hours=16,
    has_existing_patterns=True,
)


def _balancer(**config) -> WorkloadBalancer:
    return WorkloadBalancer(EngineConfig(**config), clock=lambda: WORKDAY_MORNING)


# ═══════════════════════════════════════════════════════════════════════════
# WORKLOAD STATE
# ═══════════════════════════════════════════════════════════════════════════


def test_state_rejects_counters_over_cap() -> None:
    with pytest.raises(ValueError):
        WorkloadState(max_human_tasks=2, human_active=3)


def test_state_has_no_public_mutators() -> None:
    state = WorkloadState()
    with pytest.raises(AttributeError):
        state.human_active = 3  # type: ignore[misc]


def test_ledger_is_unusable_after_section_exits() -> None:
    state = WorkloadState()
    with state.exclusive() as ledger:
        ledger.reserve(Pool.AI, api_calls=10)
    assert state.ai_active == 1
    assert state.api_calls_today == 10

    with pytest.raises(ConcurrencyViolationError):
        ledger.reserve(Pool.AI)
    with pytest.raises(ConcurrencyViolationError):
        ledger.release(Pool.AI)


def test_hybrid_reservation_takes_both_pools() -> None:
    state = WorkloadState(max_human_tasks=1)
    with state.exclusive() as ledger:
        ledger.reserve(Pool.HYBRID, hours=2.0)
        assert ledger.at_capacity(Pool.HUMAN)
        assert ledger.at_capacity(Pool.HYBRID)
        with pytest.raises(ValueError):
            ledger.reserve(Pool.HUMAN)
    assert (state.human_active, state.ai_active, state.hours_worked_today) == (1, 1, 2.0)


def test_snapshot_and_copy_are_independent() -> None:
    state = WorkloadState(human_active=2)
    clone = state.copy()
    with clone.exclusive() as ledger:
        ledger.reserve(Pool.HUMAN)
    assert state.snapshot().human_active == 2
    assert clone.snapshot().human_active == 3
    assert state.snapshot().to_dict()["human"]["max"] == 5


# ═══════════════════════════════════════════════════════════════════════════
# SUITABILITY AND AVAILABILITY
# ═══════════════════════════════════════════════════════════════════════════


def test_pool_suitability_normalization() -> None:
    human = pool_suitability(Recommendation(AssigneeCategory.HUMAN, 0.9, ""))
    ai = pool_suitability(Recommendation(AssigneeCategory.AUTOMATED_WITH_REVIEW, 0.6, ""))
    neutral = pool_suitability(Recommendation(AssigneeCategory.HYBRID, 0.8, ""))

    assert human == {Pool.HUMAN: pytest.approx(0.95), Pool.AI: pytest.approx(0.05)}
    assert ai == {Pool.HUMAN: pytest.approx(0.2), Pool.AI: pytest.approx(0.8)}
    assert neutral == {Pool.HUMAN: 0.5, Pool.AI: 0.5}


def test_human_availability_drops_outside_workday() -> None:
    balancer = _balancer()
    state = WorkloadState()
    morning = balancer.human_availability(state, WORKDAY_MORNING)
    night = balancer.human_availability(state, WORKDAY_MORNING.replace(hour=22))
    assert morning == pytest.approx(1.0)
    assert night == pytest.approx(0.9)


# ═══════════════════════════════════════════════════════════════════════════
# BATCH ASSIGNMENT
# ═══════════════════════════════════════════════════════════════════════════


def test_simple_task_goes_to_ai() -> None:
    state = WorkloadState()
    [assignment] = _balancer().assign_batch([CRUD], state, RoutingModel())

    assert assignment.pool is Pool.AI
    assert assignment.status is AssignmentStatus.ASSIGNED
    assert assignment.scheduled_start == WORKDAY_MORNING
    assert state.ai_active == 1
    assert state.api_calls_today == 10


def test_full_human_pool_defers_instead_of_overcommitting() -> None:
    state = WorkloadState(human_active=5)
    [assignment] = _balancer().assign_batch([NOVEL_ALGORITHM], state, RoutingModel())

    assert assignment.pool is Pool.HUMAN
    assert assignment.is_deferred
    assert assignment.scheduled_start is None
    assert assignment.confidence == pytest.approx(0.785)
    assert "at capacity" in assignment.reason
    assert state.human_active == 5


def test_human_assignment_reserves_default_hours() -> None:
    state = WorkloadState()
    [assignment] = _balancer().assign_batch([NOVEL_ALGORITHM], state, RoutingModel())
    assert assignment.pool is Pool.HUMAN
    assert assignment.reserved_hours == 2.0
    assert state.hours_worked_today == 2.0


def test_long_complex_task_pairs_human_and_ai() -> None:
    state = WorkloadState()
    [assignment] = _balancer().assign_batch([PAIRED], state, RoutingModel())

    assert assignment.complexity > 6.0
    assert assignment.pool is Pool.HYBRID
    assert assignment.reserved_hours == 8.0
    assert (state.human_active, state.ai_active) == (1, 1)


def test_batch_never_exceeds_caps() -> None:
    tasks = [
        TaskRequest(id=f"t{i}", description=desc)
        for i, desc in enumerate(
            ["implement CRUD endpoint", "design novel recommendation algorithm from scratch"] * 10
        )
    ]
    state = WorkloadState(max_human_tasks=2, max_ai_tasks=3)
    assignments = _balancer(max_human_tasks=2, max_ai_tasks=3).assign_batch(
        tasks, state, RoutingModel()
    )

    assert len(assignments) == len(tasks)
    assert state.human_active <= 2
    assert state.ai_active <= 3
    assigned = [a for a in assignments if not a.is_deferred]
    assert len(assigned) == state.human_active + state.ai_active
    assert any(a.is_deferred for a in assignments)


def test_assignments_come_back_in_priority_order() -> None:
    urgent = TaskRequest(
        id="urgent",
        description="Update checkout page copy",
        tags=frozenset({"revenue", "customer-facing"}),
        deadline=WORKDAY_MORNING + timedelta(hours=6),
    )
    chore = TaskRequest(id="chore", description="rename internal config keys")
    assignments = _balancer().assign_batch([chore, urgent], WorkloadState(), RoutingModel())
    assert [a.task_id for a in assignments] == ["urgent", "chore"]
    assert assignments[0].priority > assignments[1].priority


def test_equal_priorities_keep_submission_order() -> None:
    tasks = [TaskRequest(id=f"same-{i}", description="implement CRUD endpoint") for i in range(4)]
    assignments = _balancer().assign_batch(tasks, WorkloadState(), RoutingModel())
    assert [a.task_id for a in assignments] == ["same-0", "same-1", "same-2", "same-3"]


def test_identical_inputs_give_identical_assignments() -> None:
    tasks = [NOVEL_ALGORITHM, CRUD, PAIRED]
    first = _balancer().assign_batch(tasks, WorkloadState(human_active=4), RoutingModel())
    second = _balancer().assign_batch(tasks, WorkloadState(human_active=4), RoutingModel())
    assert first == second


def test_invalid_task_does_not_abort_batch() -> None:
    tasks = [TaskRequest(id="blank", description=""), CRUD]
    assignments = _balancer().assign_batch(tasks, WorkloadState(), RoutingModel())
    by_id = {a.task_id: a for a in assignments}
    assert set(by_id) == {"blank", "crud"}
    assert by_id["blank"].complexity == 5.0


def test_scoring_failure_is_isolated(monkeypatch: pytest.MonkeyPatch) -> None:
    import taskrouter.engine.balancer as balancer_module

    real = balancer_module.score_complexity

    def flaky(task, model):
        if task.id == "boom":
            raise RuntimeError("analyzer exploded")
        return real(task, model)

    monkeypatch.setattr(balancer_module, "score_complexity", flaky)
    tasks = [TaskRequest(id="boom", description="anything"), CRUD]
    assignments = _balancer().assign_batch(tasks, WorkloadState(), RoutingModel())
    assert {a.task_id for a in assignments} == {"boom", "crud"}


def test_release_and_reset_day() -> None:
    balancer = _balancer()
    state = WorkloadState()
    [assignment] = balancer.assign_batch([NOVEL_ALGORITHM], state, RoutingModel())
    balancer.release(assignment, state)
    assert state.human_active == 0
    assert state.hours_worked_today == 2.0

    balancer.reset_day(state)
    assert state.hours_worked_today == 0.0


def test_concurrent_batches_respect_caps() -> None:
    balancer = _balancer(max_ai_tasks=5)
    state = WorkloadState(max_ai_tasks=5)
    tasks = [TaskRequest(id=f"c{i}", description="implement CRUD endpoint", has_detailed_specs=True) for i in range(4)]

    threads = [
        threading.Thread(target=balancer.assign_batch, args=(tasks, state, RoutingModel()))
        for _ in range(4)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert state.ai_active <= 5
    assert state.human_active <= 5


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE FACADE
# ═══════════════════════════════════════════════════════════════════════════


def test_engine_remembers_routing_context() -> None:
    with RoutingEngine(clock=lambda: WORKDAY_MORNING, background=False) as engine:
        [assignment] = engine.assign_batch([CRUD])
        enriched = engine.enrich_outcome(
            TaskOutcome(task_id="crud", original_assignee=Pool.AI, final_assignee=Pool.AI)
        )
    assert enriched.complexity == assignment.complexity
    assert enriched.task_type == "routine"
    assert enriched.has_detailed_specs is True


def test_engine_release_is_idempotent() -> None:
    with RoutingEngine(clock=lambda: WORKDAY_MORNING, background=False) as engine:
        engine.assign_batch([CRUD])
        assert engine.workload().ai_active == 1
        assert engine.release("crud") is True
        assert engine.release("crud") is False
        assert engine.release("unknown") is False
        assert engine.workload().ai_active == 0


def test_engine_forgets_tasks_once_outcome_is_recorded() -> None:
    with RoutingEngine(clock=lambda: WORKDAY_MORNING, background=False) as engine:
        for i in range(50):
            task = TaskRequest(
                id=f"loop-{i}", description="implement CRUD endpoint", has_detailed_specs=True
            )
            engine.assign_batch([task])
            if i % 2:
                engine.release(task.id)
            engine.record_outcome(
                TaskOutcome(task.id, Pool.AI, Pool.AI, successful=True)
            )
            assert engine.routed(task.id) is None
            assert engine.workload().ai_active == 0
        assert engine.learner.window_size == 50


def test_engine_outcome_carries_context_before_forgetting() -> None:
    with RoutingEngine(clock=lambda: WORKDAY_MORNING, background=False) as engine:
        engine.assign_batch([CRUD])
        assert engine.routed("crud") is not None
        engine.record_outcome(TaskOutcome("crud", Pool.AI, Pool.HUMAN, was_reassigned=True))
        assert engine.routed("crud") is None
        assert engine.release("crud") is False
        assert engine.current_model().accuracy["ai"] == 0.0


def test_engine_rejects_duplicate_ids_in_batch() -> None:
    twin = TaskRequest(id="crud", description="design novel recommendation algorithm")
    with RoutingEngine(clock=lambda: WORKDAY_MORNING, background=False) as engine:
        with pytest.raises(InvalidInputError) as exc_info:
            engine.assign_batch([CRUD, twin])
        assert exc_info.value.details["task_ids"] == ["crud"]
        assert engine.workload().ai_active == 0
        assert engine.workload().human_active == 0
        assert engine.routed("crud") is None


def test_engine_rejects_reassigning_a_held_task() -> None:
    with RoutingEngine(clock=lambda: WORKDAY_MORNING, background=False) as engine:
        engine.assign_batch([CRUD])
        with pytest.raises(InvalidInputError):
            engine.assign_batch([CRUD])
        assert engine.workload().ai_active == 1

        engine.release("crud")
        [again] = engine.assign_batch([CRUD])
        assert again.status is AssignmentStatus.ASSIGNED
        assert engine.workload().ai_active == 1


def test_engine_allows_resubmitting_a_deferred_task() -> None:
    state = WorkloadState(human_active=5)
    with RoutingEngine(state=state, clock=lambda: WORKDAY_MORNING, background=False) as engine:
        [first] = engine.assign_batch([NOVEL_ALGORITHM])
        assert first.is_deferred
        [second] = engine.assign_batch([NOVEL_ALGORITHM])
        assert second.is_deferred


def test_engine_scoring_uses_current_model() -> None:
    engine = RoutingEngine(background=False)
    try:
        assert engine.score_complexity(CRUD).total <= 3.0
        assert engine.classify_assignment(CRUD).assignee is AssigneeCategory.AUTOMATED
        assert engine.calculate_priority(CRUD).level.value in {"low", "medium", "high", "critical"}
        assert engine.current_model().version == 1
    finally:
        engine.close()


def test_engine_clock_default_is_aware() -> None:
    engine = RoutingEngine(background=False)
    try:
        [assignment] = engine.assign_batch([CRUD])
        assert isinstance(assignment.scheduled_start, datetime)
        assert assignment.scheduled_start.tzinfo is not None
    finally:
        engine.close()
