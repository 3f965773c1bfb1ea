"""Complexity and priority scoring."""

from .complexity_analyzer import infer_task_type, recommend, score_complexity
from .priority_calculator import PriorityContext, calculate_priority, priority_level

__all__ = [
    "score_complexity",
    "recommend",
    "infer_task_type",
    "calculate_priority",
    "priority_level",
    "PriorityContext",
]
