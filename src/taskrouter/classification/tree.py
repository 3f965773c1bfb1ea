"""
Assignment Tree

Fixed-shape decision tree producing the initial human / automated / hybrid
leaning for a task, independent of current capacity. Only the leaf
confidences are tunable; they are read from the RoutingModel by leaf name.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Union

from ..models import AssigneeCategory, Recommendation, RoutingModel, TaskRequest
from ..scoring.complexity_analyzer import score_complexity
from .predicates import PREDICATES, ClassificationContext


@dataclass(frozen=True)
class Leaf:
    name: str
    assignee: AssigneeCategory


@dataclass(frozen=True)
class Decision:
    predicate: str
    label: str
    when_true: "Node"
    when_false: "Node"


Node = Union[Leaf, Decision]


ASSIGNMENT_TREE: Node = Decision(
    predicate="is_creative_work",
    label="creative work",
    when_true=Decision(
        predicate="needs_novel_solution",
        label="novel solution",
        when_true=Leaf("creative_novel", AssigneeCategory.HUMAN),
        when_false=Decision(
            predicate="follows_existing_patterns",
            label="existing patterns",
            when_true=Leaf("creative_patterned", AssigneeCategory.HYBRID),
            when_false=Leaf("creative_unpatterned", AssigneeCategory.HUMAN),
        ),
    ),
    when_false=Decision(
        predicate="is_routine_work",
        label="routine work",
        when_true=Decision(
            predicate="has_clear_specs",
            label="clear specs",
            when_true=Leaf("routine_clear", AssigneeCategory.AUTOMATED),
            when_false=Leaf("routine_unclear", AssigneeCategory.HYBRID),
        ),
        when_false=Decision(
            predicate="needs_domain_expertise",
            label="domain expertise",
            when_true=Decision(
                predicate="expertise_captured",
                label="expertise captured",
                when_true=Leaf("expertise_captured", AssigneeCategory.AUTOMATED),
                when_false=Leaf("expertise_missing", AssigneeCategory.HUMAN),
            ),
            when_false=Decision(
                predicate="exceeds_human_threshold",
                label="above human threshold",
                when_true=Leaf("fallback_human", AssigneeCategory.HUMAN),
                when_false=Leaf("fallback_automated", AssigneeCategory.AUTOMATED),
            ),
        ),
    ),
)


def leaf_assignees(node: Node = ASSIGNMENT_TREE) -> Dict[str, AssigneeCategory]:
    """Leaf name -> assignee category for every leaf under node."""
    if isinstance(node, Leaf):
        return {node.name: node.assignee}
    return {**leaf_assignees(node.when_true), **leaf_assignees(node.when_false)}


def _walk(
    node: Node,
    task: TaskRequest,
    context: ClassificationContext,
    model: RoutingModel,
    path: List[str],
) -> Leaf:
    if isinstance(node, Leaf):
        return node
    outcome = PREDICATES[node.predicate](task, context, model)
    path.append(f"{node.label}: {'yes' if outcome else 'no'}")
    return _walk(node.when_true if outcome else node.when_false, task, context, model, path)


def classify_assignment(
    task: TaskRequest,
    context: Optional[ClassificationContext],
    model: RoutingModel,
    tree: Node = ASSIGNMENT_TREE,
) -> Recommendation:
    """
    Classify a task into a categorical assignee leaning.

    Args:
        task: Task to classify
        context: Complexity total, task type and known signatures. Missing
            values are derived from the task and model.
        model: Current routing model (thresholds, leaf confidences, patterns)
        tree: Decision tree to traverse

    Returns:
        Recommendation with the leaf's assignee, its confidence and the path
        taken as the reason
    """
    if not task.description or not task.description.strip():
        return Recommendation(
            AssigneeCategory.HYBRID, 0.0, "Invalid input: missing description"
        )

    context = context or ClassificationContext()
    if context.complexity is None or context.task_type is None:
        scored = score_complexity(task, model)
        context = replace(
            context,
            complexity=scored.total if context.complexity is None else context.complexity,
            task_type=scored.task_type if context.task_type is None else context.task_type,
        )

    path: List[str] = []
    leaf = _walk(tree, task, context, model, path)
    return Recommendation(
        assignee=leaf.assignee,
        confidence=model.leaf_confidence(leaf.name),
        reason=" -> ".join(path) + f" => {leaf.assignee.value}",
    )
