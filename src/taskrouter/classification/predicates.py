"""
Branch Predicates

Named pure functions evaluated by the assignment tree. Each takes
(task, context, model) and returns a bool; none of them touch shared state,
so the tree is reproducible for a fixed task, context and model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Final, FrozenSet, Optional

from ..models import Pool, RoutingModel, RoutingPattern, TaskRequest, pattern_signature
from ..scoring.complexity_analyzer import (
    CREATIVE_TAGS,
    DOMAIN_TAGS,
    SPECIALIZED_DOMAINS,
    count_signals,
)

NOVELTY_KEYWORDS: Final[list[str]] = [
    "novel", "from scratch", "innovat", "invent", "new algorithm", "research",
    "experimental", "greenfield", "first-of-its-kind",
]

ROUTINE_TAGS: Final[frozenset[str]] = frozenset({"routine", "chore", "maintenance", "boilerplate"})


@dataclass(frozen=True)
class ClassificationContext:
    """Pipeline state visible to the predicates.

    complexity and task_type are filled in by classify_assignment when the
    caller does not supply them.
    """

    complexity: Optional[float] = None
    task_type: Optional[str] = None
    known_signatures: FrozenSet[str] = frozenset()


Predicate = Callable[[TaskRequest, ClassificationContext, RoutingModel], bool]


def _matching_pattern(
    task: TaskRequest, context: ClassificationContext, model: RoutingModel
) -> Optional[RoutingPattern]:
    if context.complexity is None or context.task_type is None:
        return None
    signature = pattern_signature(
        context.task_type, task.tags, context.complexity, task.has_detailed_specs
    )
    return model.find_pattern(signature)


def _signature_known(task: TaskRequest, context: ClassificationContext) -> bool:
    if context.complexity is None or context.task_type is None:
        return False
    signature = pattern_signature(
        context.task_type, task.tags, context.complexity, task.has_detailed_specs
    )
    return signature in context.known_signatures


def is_creative_work(task: TaskRequest, context: ClassificationContext, model: RoutingModel) -> bool:
    return bool(task.tags & CREATIVE_TAGS) or count_signals(task.description, "creative") > 0


def needs_novel_solution(
    task: TaskRequest, context: ClassificationContext, model: RoutingModel
) -> bool:
    if task.has_existing_patterns:
        return False
    lower = task.description.lower()
    return any(keyword in lower for keyword in NOVELTY_KEYWORDS)


def follows_existing_patterns(
    task: TaskRequest, context: ClassificationContext, model: RoutingModel
) -> bool:
    if task.has_existing_patterns or _signature_known(task, context):
        return True
    return _matching_pattern(task, context, model) is not None


def is_routine_work(task: TaskRequest, context: ClassificationContext, model: RoutingModel) -> bool:
    return bool(task.tags & ROUTINE_TAGS) or count_signals(task.description, "routine") > 0


def has_clear_specs(task: TaskRequest, context: ClassificationContext, model: RoutingModel) -> bool:
    return task.has_detailed_specs


def needs_domain_expertise(
    task: TaskRequest, context: ClassificationContext, model: RoutingModel
) -> bool:
    if task.domain and task.domain.lower() in SPECIALIZED_DOMAINS:
        return True
    return bool(task.tags & DOMAIN_TAGS) or count_signals(task.description, "domain") > 0


def expertise_captured(
    task: TaskRequest, context: ClassificationContext, model: RoutingModel
) -> bool:
    """Prior examples exist that automation has handled successfully."""
    if task.has_existing_patterns or _signature_known(task, context):
        return True
    pattern = _matching_pattern(task, context, model)
    return pattern is not None and pattern.assignee is not Pool.HUMAN


def exceeds_human_threshold(
    task: TaskRequest, context: ClassificationContext, model: RoutingModel
) -> bool:
    complexity = context.complexity if context.complexity is not None else 0.0
    return complexity > model.thresholds.human_min


PREDICATES: Final[Dict[str, Predicate]] = {
    "is_creative_work": is_creative_work,
    "needs_novel_solution": needs_novel_solution,
    "follows_existing_patterns": follows_existing_patterns,
    "is_routine_work": is_routine_work,
    "has_clear_specs": has_clear_specs,
    "needs_domain_expertise": needs_domain_expertise,
    "expertise_captured": expertise_captured,
    "exceeds_human_threshold": exceeds_human_threshold,
}
