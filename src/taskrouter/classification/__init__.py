"""Rule-tree assignment classification."""

from .predicates import PREDICATES, ClassificationContext
from .tree import ASSIGNMENT_TREE, Decision, Leaf, classify_assignment, leaf_assignees

__all__ = [
    "ASSIGNMENT_TREE",
    "ClassificationContext",
    "Decision",
    "Leaf",
    "PREDICATES",
    "classify_assignment",
    "leaf_assignees",
]
