"""Tests for the assignment decision tree and its predicates."""

from __future__ import annotations

from taskrouter.classification import (
    ASSIGNMENT_TREE,
    ClassificationContext,
    Decision,
    Leaf,
    PREDICATES,
    classify_assignment,
    leaf_assignees,
)
from taskrouter.models import (
    DEFAULT_LEAF_CONFIDENCES,
    AssigneeCategory,
    Pool,
    RoutingModel,
    RoutingPattern,
    TaskRequest,
    pattern_signature,
)
from taskrouter.scoring import score_complexity


def _predicates_in(node) -> set[str]:
    if isinstance(node, Leaf):
        return set()
    return {node.predicate} | _predicates_in(node.when_true) | _predicates_in(node.when_false)


def test_tree_leaves_match_default_confidences() -> None:
    assert set(leaf_assignees()) == set(DEFAULT_LEAF_CONFIDENCES)


def test_tree_only_uses_registered_predicates() -> None:
    assert isinstance(ASSIGNMENT_TREE, Decision)
    assert _predicates_in(ASSIGNMENT_TREE) <= set(PREDICATES)


def test_routine_task_with_specs_is_automated() -> None:
    task = TaskRequest(id="a", description="implement CRUD endpoint", has_detailed_specs=True)
    result = classify_assignment(task, None, RoutingModel())

    assert result.assignee is AssigneeCategory.AUTOMATED
    assert result.confidence >= 0.85
    assert result.reason.endswith("=> automated")
    assert "routine work: yes" in result.reason


def test_routine_task_without_specs_is_hybrid() -> None:
    task = TaskRequest(id="a", description="implement CRUD endpoint")
    result = classify_assignment(task, None, RoutingModel())
    assert result.assignee is AssigneeCategory.HYBRID
    assert result.confidence == 0.7


def test_novel_creative_task_needs_human() -> None:
    task = TaskRequest(
        id="b",
        description="design novel recommendation algorithm from scratch",
        tags=frozenset({"creative"}),
    )
    result = classify_assignment(task, None, RoutingModel())

    assert result.assignee is AssigneeCategory.HUMAN
    assert result.confidence >= 0.9
    assert result.reason.startswith("creative work: yes -> novel solution: yes")


def test_patterned_creative_task_is_hybrid() -> None:
    task = TaskRequest(
        id="b2",
        description="design a landing page variant",
        tags=frozenset({"creative"}),
        has_existing_patterns=True,
    )
    result = classify_assignment(task, None, RoutingModel())
    assert result.assignee is AssigneeCategory.HYBRID


def test_domain_task_without_captured_expertise_needs_human() -> None:
    task = TaskRequest(id="d", description="Update tax calculation for invoices", domain="finance")
    result = classify_assignment(task, None, RoutingModel())
    assert result.assignee is AssigneeCategory.HUMAN
    assert result.confidence == 0.9
    assert "expertise captured: no" in result.reason


def test_learned_pattern_captures_domain_expertise() -> None:
    task = TaskRequest(id="d", description="Update tax calculation for invoices", domain="finance")
    scored = score_complexity(task, RoutingModel())
    signature = pattern_signature(scored.task_type, task.tags, scored.total, False)
    model = RoutingModel(patterns=(RoutingPattern(signature, Pool.AI, 0.9, 10, 0.9),))

    result = classify_assignment(task, None, model)
    assert result.assignee is AssigneeCategory.AUTOMATED
    assert result.confidence == 0.75


def test_known_signature_in_context_captures_expertise() -> None:
    task = TaskRequest(id="d", description="Update tax calculation for invoices", domain="finance")
    scored = score_complexity(task, RoutingModel())
    signature = pattern_signature(scored.task_type, task.tags, scored.total, False)
    context = ClassificationContext(
        complexity=scored.total,
        task_type=scored.task_type,
        known_signatures=frozenset({signature}),
    )
    result = classify_assignment(task, context, RoutingModel())
    assert result.assignee is AssigneeCategory.AUTOMATED


def test_fallback_uses_human_threshold() -> None:
    task = TaskRequest(id="f", description="Write quarterly report summary")
    low = classify_assignment(task, ClassificationContext(complexity=4.0, task_type="general"), RoutingModel())
    high = classify_assignment(task, ClassificationContext(complexity=8.5, task_type="general"), RoutingModel())

    assert low.assignee is AssigneeCategory.AUTOMATED
    assert low.confidence == 0.85
    assert high.assignee is AssigneeCategory.HUMAN
    assert high.confidence == 0.8


def test_leaf_confidence_comes_from_model() -> None:
    task = TaskRequest(id="a", description="implement CRUD endpoint", has_detailed_specs=True)
    model = RoutingModel(leaf_confidences={**DEFAULT_LEAF_CONFIDENCES, "routine_clear": 0.61})
    assert classify_assignment(task, None, model).confidence == 0.61


def test_classification_is_deterministic() -> None:
    task = TaskRequest(
        id="x",
        description="Investigate flaky payment webhook retries",
        tags=frozenset({"payments"}),
    )
    context = ClassificationContext(complexity=5.5, task_type="integration")
    model = RoutingModel()
    results = {classify_assignment(task, context, model) for _ in range(5)}
    assert len(results) == 1


def test_missing_description_is_hybrid_with_zero_confidence() -> None:
    result = classify_assignment(TaskRequest(id="e", description=""), None, RoutingModel())
    assert result.assignee is AssigneeCategory.HYBRID
    assert result.confidence == 0.0
