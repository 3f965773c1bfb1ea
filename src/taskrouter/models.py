"""
Routing Data Models

Core dataclasses shared by the scorers, the balancer and the learner.
Snapshots (scores, assignments, outcomes, RoutingModel) are frozen; the only
mutable record in the system is WorkloadState in engine.workload.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Final, Mapping

from .errors import InvalidInputError


# ═══════════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════════


class Pool(str, Enum):
    """Execution pools a task can be routed to."""

    HUMAN = "human"
    AI = "ai"
    HYBRID = "hybrid"


class AssigneeCategory(str, Enum):
    """Categorical leaning produced by the analyzer and the classifier."""

    HUMAN = "human"
    AUTOMATED = "automated"
    AUTOMATED_WITH_REVIEW = "automated_with_review"
    HYBRID = "hybrid"


class PriorityLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    DEFERRED = "deferred"


CATEGORY_POOL: Final[dict[AssigneeCategory, Pool]] = {
    AssigneeCategory.HUMAN: Pool.HUMAN,
    AssigneeCategory.AUTOMATED: Pool.AI,
    AssigneeCategory.AUTOMATED_WITH_REVIEW: Pool.AI,
    AssigneeCategory.HYBRID: Pool.HYBRID,
}


# ═══════════════════════════════════════════════════════════════════════════
# DEFAULTS
# ═══════════════════════════════════════════════════════════════════════════

DEFAULT_COMPLEXITY_WEIGHTS: Final[dict[str, float]] = {
    "code_complexity": 0.30,
    "domain_knowledge": 0.20,
    "creativity": 0.20,
    "uncertainty": 0.15,
    "dependencies": 0.15,
}

DEFAULT_PRIORITY_WEIGHTS: Final[dict[str, float]] = {
    "business_value": 0.35,
    "urgency": 0.25,
    "dependency_impact": 0.20,
    "complexity": 0.10,
    "risk_reduction": 0.10,
}

# Leaf name -> confidence. The tree shape lives in classification.tree.
DEFAULT_LEAF_CONFIDENCES: Final[dict[str, float]] = {
    "creative_novel": 0.95,
    "creative_patterned": 0.80,
    "creative_unpatterned": 0.85,
    "routine_clear": 0.90,
    "routine_unclear": 0.70,
    "expertise_captured": 0.75,
    "expertise_missing": 0.90,
    "fallback_human": 0.80,
    "fallback_automated": 0.85,
}

DEFAULT_ACCURACY: Final[float] = 0.5


def _frozen_mapping(value: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value))


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def _parse_optional_number(value: Any, cast: type = float) -> Any:
    if value is None or value == "":
        return None
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Expected a number, got {value!r}") from exc
    if isinstance(number, float) and math.isnan(number):
        return None
    return number


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def complexity_bucket(total: float) -> int:
    """Integer bucket 0-10 for a complexity total."""
    return max(0, min(10, int(math.floor(total))))


def pattern_signature(
    task_type: str, tags: frozenset[str] | set[str] | tuple[str, ...], complexity: float, has_specs: bool
) -> str:
    """Signature grouping outcomes of similar tasks."""
    tag_part = ",".join(sorted(tags))
    spec_part = "specs" if has_specs else "nospecs"
    return f"{task_type}|{tag_part}|{complexity_bucket(complexity)}|{spec_part}"


# ═══════════════════════════════════════════════════════════════════════════
# TASK INPUT
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TaskRequest:
    """A unit of work submitted for routing. Immutable once submitted."""

    id: str
    description: str
    tags: frozenset[str] = frozenset()
    estimated_files: int | None = None
    estimated_hours: float | None = None
    affected_users: int | None = None
    estimated_revenue: float | None = None
    deadline: datetime | None = None
    external_deadline: bool = False
    domain: str | None = None
    has_detailed_specs: bool = False
    has_existing_patterns: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "tags", frozenset(str(t).strip().lower() for t in self.tags if str(t).strip())
        )

    def validation_errors(self) -> list[str]:
        """Names of missing required fields."""
        errors = []
        if not self.id or not str(self.id).strip():
            errors.append("id")
        if not self.description or not self.description.strip():
            errors.append("description")
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskRequest:
        """Parse a caller-supplied dict (camelCase or snake_case keys).

        Raises:
            InvalidInputError: if the id is missing or a field cannot be parsed.
        """
        task_id = _pick(data, "id", "task_id", "taskId")
        if task_id is None or not str(task_id).strip():
            raise InvalidInputError("Task id is required", details={"task": dict(data)})

        deadline_raw = _pick(data, "deadline")
        deadline: datetime | None
        if deadline_raw in (None, ""):
            deadline = None
        elif isinstance(deadline_raw, datetime):
            deadline = deadline_raw
        else:
            try:
                deadline = datetime.fromisoformat(str(deadline_raw))
            except ValueError as exc:
                raise InvalidInputError(
                    f"Invalid deadline {deadline_raw!r} for task {task_id}"
                ) from exc

        tags = _pick(data, "tags", default=()) or ()
        if isinstance(tags, str):
            tags = [t for t in tags.split(",")]

        return cls(
            id=str(task_id),
            description=str(_pick(data, "description", default="") or ""),
            tags=frozenset(tags),
            estimated_files=_parse_optional_number(
                _pick(data, "estimated_files", "estimatedFiles"), int
            ),
            estimated_hours=_parse_optional_number(
                _pick(data, "estimated_hours", "estimatedHours")
            ),
            affected_users=_parse_optional_number(
                _pick(data, "affected_users", "affectedUsers"), int
            ),
            estimated_revenue=_parse_optional_number(
                _pick(data, "estimated_revenue", "estimatedRevenue")
            ),
            deadline=deadline,
            external_deadline=_parse_bool(
                _pick(data, "external_deadline", "externalDeadline", default=False)
            ),
            domain=_pick(data, "domain"),
            has_detailed_specs=_parse_bool(
                _pick(data, "has_detailed_specs", "hasDetailedSpecs", default=False)
            ),
            has_existing_patterns=_parse_bool(
                _pick(data, "has_existing_patterns", "hasExistingPatterns", default=False)
            ),
        )


# ═══════════════════════════════════════════════════════════════════════════
# SCORES
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Recommendation:
    """Categorical leaning with a confidence in [0, 1]."""

    assignee: AssigneeCategory
    confidence: float
    reason: str

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0.0, 1.0], got {self.confidence}")

    @property
    def pool(self) -> Pool:
        return CATEGORY_POOL[self.assignee]

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignee": self.assignee.value,
            "pool": self.pool.value,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ComplexityScore:
    """Intrinsic difficulty of a task. Derived fresh for every request."""

    total: float
    breakdown: Mapping[str, float]
    recommendation: Recommendation
    task_type: str = "general"

    def __post_init__(self) -> None:
        if not 0.0 <= self.total <= 10.0:
            raise ValueError(f"total must be in [0.0, 10.0], got {self.total}")
        object.__setattr__(self, "breakdown", _frozen_mapping(self.breakdown))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "breakdown": dict(self.breakdown),
            "task_type": self.task_type,
            "recommendation": self.recommendation.to_dict(),
        }


@dataclass(frozen=True)
class PriorityScore:
    """Business urgency and value of a task."""

    total: float
    level: PriorityLevel
    breakdown: Mapping[str, float]
    reasoning: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "breakdown", _frozen_mapping(self.breakdown))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "level": self.level.value,
            "breakdown": dict(self.breakdown),
            "reasoning": self.reasoning,
        }


# ═══════════════════════════════════════════════════════════════════════════
# BALANCER OUTPUT AND FEEDBACK
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Assignment:
    """Balancer decision for one task in one balancing pass."""

    task_id: str
    pool: Pool
    status: AssignmentStatus
    scheduled_start: datetime | None
    confidence: float
    reason: str
    priority: float = 0.0
    complexity: float = 0.0
    reserved_hours: float = 0.0

    @property
    def is_deferred(self) -> bool:
        return self.status is AssignmentStatus.DEFERRED

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "pool": self.pool.value,
            "status": self.status.value,
            "scheduled_start": (
                self.scheduled_start.isoformat() if self.scheduled_start else None
            ),
            "confidence": self.confidence,
            "reason": self.reason,
            "priority": self.priority,
            "complexity": self.complexity,
            "reserved_hours": self.reserved_hours,
        }


@dataclass(frozen=True)
class TaskOutcome:
    """Completed-task report. Optional fields carry routing context."""

    task_id: str
    original_assignee: Pool
    final_assignee: Pool
    was_reassigned: bool = False
    successful: bool = False
    failed: bool = False
    complexity: float | None = None
    task_type: str | None = None
    tags: frozenset[str] = frozenset()
    has_detailed_specs: bool | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", frozenset(t.lower() for t in self.tags))

    @property
    def significant(self) -> bool:
        """Outcomes that trigger an immediate lightweight adjustment."""
        return self.was_reassigned or self.failed

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskOutcome:
        task_id = _pick(data, "task_id", "taskId", "id")
        if task_id is None or not str(task_id).strip():
            raise InvalidInputError("Outcome task id is required", details={"outcome": dict(data)})
        try:
            original = Pool(_pick(data, "original_assignee", "originalAssignee"))
            final = Pool(
                _pick(data, "final_assignee", "finalAssignee", default=original.value)
            )
        except ValueError as exc:
            raise InvalidInputError(f"Invalid assignee in outcome for {task_id}") from exc

        complexity = _parse_optional_number(_pick(data, "complexity"))
        specs = _pick(data, "has_detailed_specs", "hasDetailedSpecs")
        return cls(
            task_id=str(task_id),
            original_assignee=original,
            final_assignee=final,
            was_reassigned=_parse_bool(
                _pick(data, "was_reassigned", "wasReassigned", default=original is not final)
            ),
            successful=_parse_bool(_pick(data, "successful", default=False)),
            failed=_parse_bool(_pick(data, "failed", default=False)),
            complexity=complexity,
            task_type=_pick(data, "task_type", "taskType"),
            tags=frozenset(_pick(data, "tags", default=()) or ()),
            has_detailed_specs=None if specs is None else _parse_bool(specs),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "original_assignee": self.original_assignee.value,
            "final_assignee": self.final_assignee.value,
            "was_reassigned": self.was_reassigned,
            "successful": self.successful,
            "failed": self.failed,
            "complexity": self.complexity,
            "task_type": self.task_type,
            "tags": sorted(self.tags),
            "has_detailed_specs": self.has_detailed_specs,
        }


# ═══════════════════════════════════════════════════════════════════════════
# ROUTING MODEL SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Thresholds:
    """Complexity cut points used by the analyzer and the classifier."""

    ai_max: float = 3.0
    review_max: float = 5.0
    human_min: float = 7.0


@dataclass(frozen=True)
class DecisionWeights:
    """Weights for the three scoring stages."""

    complexity: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COMPLEXITY_WEIGHTS)
    )
    priority: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS))
    availability: float = 0.4
    suitability: float = 0.6

    def __post_init__(self) -> None:
        object.__setattr__(self, "complexity", _frozen_mapping(self.complexity))
        object.__setattr__(self, "priority", _frozen_mapping(self.priority))


@dataclass(frozen=True)
class RoutingPattern:
    """A signature that historically routes well to one assignee."""

    signature: str
    assignee: Pool
    confidence: float
    occurrences: int
    success_rate: float


@dataclass(frozen=True)
class RoutingModel:
    """Versioned, immutable model snapshot read by every component."""

    version: int = 1
    accuracy: Mapping[str, float] = field(
        default_factory=lambda: {pool.value: DEFAULT_ACCURACY for pool in Pool}
    )
    thresholds: Thresholds = field(default_factory=Thresholds)
    weights: DecisionWeights = field(default_factory=DecisionWeights)
    leaf_confidences: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_LEAF_CONFIDENCES)
    )
    patterns: tuple[RoutingPattern, ...] = ()
    outcome_count: int = 0
    # outcome_count at the last full recompute
    calibrated_through: int = 0
    created_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "accuracy", _frozen_mapping(self.accuracy))
        object.__setattr__(self, "leaf_confidences", _frozen_mapping(self.leaf_confidences))
        object.__setattr__(self, "patterns", tuple(self.patterns))

    def leaf_confidence(self, leaf: str) -> float:
        return float(self.leaf_confidences.get(leaf, DEFAULT_LEAF_CONFIDENCES[leaf]))

    def find_pattern(self, signature: str) -> RoutingPattern | None:
        for pattern in self.patterns:
            if pattern.signature == signature:
                return pattern
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "accuracy": dict(self.accuracy),
            "thresholds": {
                "ai_max": self.thresholds.ai_max,
                "review_max": self.thresholds.review_max,
                "human_min": self.thresholds.human_min,
            },
            "weights": {
                "complexity": dict(self.weights.complexity),
                "priority": dict(self.weights.priority),
                "availability": self.weights.availability,
                "suitability": self.weights.suitability,
            },
            "leaf_confidences": dict(self.leaf_confidences),
            "patterns": [
                {
                    "signature": p.signature,
                    "assignee": p.assignee.value,
                    "confidence": p.confidence,
                    "occurrences": p.occurrences,
                    "success_rate": p.success_rate,
                }
                for p in self.patterns
            ],
            "outcome_count": self.outcome_count,
            "calibrated_through": self.calibrated_through,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RoutingModel:
        thresholds = data.get("thresholds", {})
        weights = data.get("weights", {})
        return cls(
            version=int(data.get("version", 1)),
            accuracy={
                **{pool.value: DEFAULT_ACCURACY for pool in Pool},
                **data.get("accuracy", {}),
            },
            thresholds=Thresholds(
                ai_max=float(thresholds.get("ai_max", 3.0)),
                review_max=float(thresholds.get("review_max", 5.0)),
                human_min=float(thresholds.get("human_min", 7.0)),
            ),
            weights=DecisionWeights(
                complexity={**DEFAULT_COMPLEXITY_WEIGHTS, **weights.get("complexity", {})},
                priority={**DEFAULT_PRIORITY_WEIGHTS, **weights.get("priority", {})},
                availability=float(weights.get("availability", 0.4)),
                suitability=float(weights.get("suitability", 0.6)),
            ),
            leaf_confidences={
                **DEFAULT_LEAF_CONFIDENCES,
                **data.get("leaf_confidences", {}),
            },
            patterns=tuple(
                RoutingPattern(
                    signature=p["signature"],
                    assignee=Pool(p["assignee"]),
                    confidence=float(p["confidence"]),
                    occurrences=int(p["occurrences"]),
                    success_rate=float(p["success_rate"]),
                )
                for p in data.get("patterns", [])
            ),
            outcome_count=int(data.get("outcome_count", 0)),
            calibrated_through=int(
                data.get("calibrated_through", data.get("outcome_count", 0))
            ),
            created_at=str(data.get("created_at", datetime.now().isoformat(timespec="seconds"))),
        )
