"""Model recalibration from task outcomes.

Pure functions: each takes the current snapshot plus a window of outcomes and
returns new values. Nothing here publishes; the learner does that after
check_model_integrity passes.

Full recompute:
    (a) accuracy per pool = successes without reassignment / total
    (b) threshold drift from per-bucket reassignment direction, counted over
        outcomes received since the previous full recompute
    (c) pattern extraction, confidence = success_rate * min(occurrences / 10, 1)
    (d) leaf confidences blended toward observed pool accuracy
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from taskrouter.classification import leaf_assignees
from taskrouter.errors import InsufficientDataError, ModelCorruptionError
from taskrouter.models import (
    CATEGORY_POOL,
    DEFAULT_ACCURACY,
    Pool,
    RoutingModel,
    RoutingPattern,
    TaskOutcome,
    Thresholds,
    complexity_bucket,
    pattern_signature,
)

PATTERN_MIN_CONFIDENCE = 0.7
PATTERN_FULL_EVIDENCE = 10
LEAF_BLEND_ALPHA = 0.3

AI_TO_HUMAN = "ai_to_human"
HUMAN_TO_AI = "human_to_ai"


@dataclass(frozen=True)
class ThresholdAdjustment:
    """One threshold move made during recalibration."""

    parameter: str
    current_value: float
    proposed_value: float
    bucket: int
    evidence_count: int


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


# ═══════════════════════════════════════════════════════════════════════════
# (a) ACCURACY
# ═══════════════════════════════════════════════════════════════════════════


def clean_success(outcome: TaskOutcome) -> bool:
    """Succeeded with the pool it was first routed to."""
    return outcome.successful and not outcome.was_reassigned and not outcome.failed


def pool_observations(outcomes: Sequence[TaskOutcome]) -> dict[Pool, tuple[int, int]]:
    """Pool -> (clean successes, total) keyed by the original assignee."""
    totals: Counter[Pool] = Counter()
    wins: Counter[Pool] = Counter()
    for outcome in outcomes:
        totals[outcome.original_assignee] += 1
        if clean_success(outcome):
            wins[outcome.original_assignee] += 1
    return {pool: (wins[pool], totals[pool]) for pool in totals}


def compute_accuracy(outcomes: Sequence[TaskOutcome]) -> dict[str, float]:
    observed = pool_observations(outcomes)
    accuracy = {}
    for pool in Pool:
        wins, total = observed.get(pool, (0, 0))
        accuracy[pool.value] = round(wins / total, 4) if total else DEFAULT_ACCURACY
    return accuracy


# ═══════════════════════════════════════════════════════════════════════════
# (b) THRESHOLDS
# ═══════════════════════════════════════════════════════════════════════════


def reassignment_counts(outcomes: Sequence[TaskOutcome]) -> dict[int, Counter[str]]:
    """Complexity bucket -> reassignment direction counts.

    Outcomes without a known complexity carry no bucket and are skipped.
    """
    counts: dict[int, Counter[str]] = defaultdict(Counter)
    for outcome in outcomes:
        if not outcome.was_reassigned or outcome.complexity is None:
            continue
        bucket = complexity_bucket(outcome.complexity)
        if outcome.original_assignee is Pool.AI and outcome.final_assignee is Pool.HUMAN:
            counts[bucket][AI_TO_HUMAN] += 1
        elif outcome.original_assignee is Pool.HUMAN and outcome.final_assignee is Pool.AI:
            counts[bucket][HUMAN_TO_AI] += 1
    return dict(counts)


def clamp_thresholds(ai_max: float, review_max: float, human_min: float) -> Thresholds:
    """ai_max in [1, 10], human_min in [ai_max + 1, 10], review_max between them."""
    ai_max = max(1.0, min(10.0, ai_max))
    human_min = max(min(ai_max + 1.0, 10.0), min(10.0, human_min))
    review_max = max(ai_max, min(human_min, review_max))
    return Thresholds(ai_max=ai_max, review_max=review_max, human_min=human_min)


def adjust_thresholds(
    thresholds: Thresholds,
    counts: Mapping[int, Counter[str]],
    step: float,
) -> tuple[Thresholds, list[ThresholdAdjustment]]:
    """Move each threshold at most one step.

    Automation handed back to humans in a bucket below human_min means
    ai_max is too generous; the reverse above ai_max means human_min is
    too low.
    """
    ai_max, human_min = thresholds.ai_max, thresholds.human_min
    adjustments: list[ThresholdAdjustment] = []

    for bucket in sorted(counts):
        c = counts[bucket]
        if bucket < thresholds.human_min and c[AI_TO_HUMAN] > c[HUMAN_TO_AI]:
            adjustments.append(
                ThresholdAdjustment(
                    "ai_max", thresholds.ai_max, thresholds.ai_max - step, bucket, c[AI_TO_HUMAN]
                )
            )
            ai_max = thresholds.ai_max - step
            break

    for bucket in sorted(counts, reverse=True):
        c = counts[bucket]
        if bucket > thresholds.ai_max and c[HUMAN_TO_AI] > c[AI_TO_HUMAN]:
            adjustments.append(
                ThresholdAdjustment(
                    "human_min",
                    thresholds.human_min,
                    thresholds.human_min + step,
                    bucket,
                    c[HUMAN_TO_AI],
                )
            )
            human_min = thresholds.human_min + step
            break

    return clamp_thresholds(ai_max, thresholds.review_max, human_min), adjustments


# ═══════════════════════════════════════════════════════════════════════════
# (c) PATTERNS
# ═══════════════════════════════════════════════════════════════════════════


def extract_patterns(outcomes: Sequence[TaskOutcome]) -> tuple[RoutingPattern, ...]:
    """Signatures that reliably route to one assignee, most confident first.

    Only clean successes count toward a signature's success rate.
    """
    groups: dict[str, list[TaskOutcome]] = defaultdict(list)
    for outcome in outcomes:
        if outcome.complexity is None or outcome.task_type is None:
            continue
        signature = pattern_signature(
            outcome.task_type,
            outcome.tags,
            outcome.complexity,
            bool(outcome.has_detailed_specs),
        )
        groups[signature].append(outcome)

    patterns = []
    for signature, group in groups.items():
        successes = [o for o in group if clean_success(o)]
        if not successes:
            continue
        success_rate = len(successes) / len(group)
        confidence = success_rate * min(len(group) / PATTERN_FULL_EVIDENCE, 1.0)
        if confidence <= PATTERN_MIN_CONFIDENCE:
            continue
        by_pool = Counter(o.original_assignee for o in successes)
        # Ties resolve in Pool declaration order
        assignee = max(Pool, key=lambda pool: (by_pool[pool], -list(Pool).index(pool)))
        patterns.append(
            RoutingPattern(
                signature=signature,
                assignee=assignee,
                confidence=round(confidence, 4),
                occurrences=len(group),
                success_rate=round(success_rate, 4),
            )
        )

    patterns.sort(key=lambda p: (-p.confidence, p.signature))
    return tuple(patterns)


# ═══════════════════════════════════════════════════════════════════════════
# (d) LEAF CONFIDENCES
# ═══════════════════════════════════════════════════════════════════════════


def blend_leaf_confidences(
    leaf_confidences: Mapping[str, float],
    accuracy: Mapping[str, float],
    observed: set[Pool],
    alpha: float = LEAF_BLEND_ALPHA,
) -> dict[str, float]:
    """EMA each leaf toward the accuracy of the pool it routes to.

    Leaves whose pool has no observations keep their confidence.
    """
    assignees = leaf_assignees()
    blended = dict(leaf_confidences)
    for leaf, current in leaf_confidences.items():
        category = assignees.get(leaf)
        if category is None:
            continue
        pool = CATEGORY_POOL[category]
        if pool not in observed:
            continue
        blended[leaf] = round((1 - alpha) * current + alpha * accuracy[pool.value], 4)
    return blended


# ═══════════════════════════════════════════════════════════════════════════
# INTEGRITY AND MODEL BUILDING
# ═══════════════════════════════════════════════════════════════════════════


def _unit(value: float) -> bool:
    return math.isfinite(value) and 0.0 <= value <= 1.0


def check_model_integrity(model: RoutingModel) -> None:
    """Reject snapshots that must never be published.

    Raises:
        ModelCorruptionError: naming every violated constraint.
    """
    problems: list[str] = []
    t = model.thresholds
    values = (t.ai_max, t.review_max, t.human_min)
    if not all(math.isfinite(v) for v in values):
        problems.append("non-finite threshold")
    elif not (1.0 <= t.ai_max < t.human_min <= 10.0 and t.ai_max <= t.review_max <= t.human_min):
        problems.append(
            f"thresholds out of order: ai_max={t.ai_max} review_max={t.review_max} "
            f"human_min={t.human_min}"
        )

    for pool, value in model.accuracy.items():
        if not _unit(value):
            problems.append(f"accuracy[{pool}]={value}")
    for leaf, value in model.leaf_confidences.items():
        if not _unit(value):
            problems.append(f"leaf_confidence[{leaf}]={value}")

    for group, weights in (
        ("complexity", model.weights.complexity),
        ("priority", model.weights.priority),
    ):
        if any(not math.isfinite(w) or w < 0 for w in weights.values()):
            problems.append(f"negative or non-finite {group} weight")
        elif sum(weights.values()) <= 0:
            problems.append(f"{group} weights sum to zero")
    if not (_unit(model.weights.availability) and _unit(model.weights.suitability)):
        problems.append("decision weights outside [0, 1]")

    for pattern in model.patterns:
        if not (_unit(pattern.confidence) and _unit(pattern.success_rate)):
            problems.append(f"pattern {pattern.signature} has invalid confidence")

    if problems:
        raise ModelCorruptionError(
            "Recalibrated model failed integrity check",
            details={"version": model.version, "problems": problems},
        )


def outcomes_since_recalibration(
    model: RoutingModel, outcomes: Sequence[TaskOutcome], outcome_count: int
) -> Sequence[TaskOutcome]:
    """Tail of the window the model's thresholds have not yet seen.

    The window is contiguous and ends at outcome number outcome_count.
    """
    fresh = outcome_count - model.calibrated_through
    if fresh <= 0:
        return ()
    if fresh >= len(outcomes):
        return outcomes
    return outcomes[len(outcomes) - fresh:]


def build_recalibrated_model(
    model: RoutingModel,
    outcomes: Sequence[TaskOutcome],
    outcome_count: int,
    min_outcomes: int = 10,
    step: float = 0.5,
) -> tuple[RoutingModel, list[ThresholdAdjustment]]:
    """Full recompute over the outcome window.

    Accuracy, patterns and leaves are re-estimated from the whole window.
    Thresholds move on reassignments received since the last full recompute
    only, so each reassignment shifts them at most once.

    Raises:
        InsufficientDataError: fewer than min_outcomes outcomes in the window.
        ModelCorruptionError: the new snapshot failed its integrity check.
    """
    if len(outcomes) < min_outcomes:
        raise InsufficientDataError(
            f"Need {min_outcomes} outcomes to recalibrate, have {len(outcomes)}",
            details={"available": len(outcomes), "required": min_outcomes},
        )

    accuracy = compute_accuracy(outcomes)
    fresh = outcomes_since_recalibration(model, outcomes, outcome_count)
    thresholds, adjustments = adjust_thresholds(
        model.thresholds, reassignment_counts(fresh), step
    )
    observed = set(pool_observations(outcomes))

    candidate = replace(
        model,
        version=model.version + 1,
        accuracy=accuracy,
        thresholds=thresholds,
        patterns=extract_patterns(outcomes),
        leaf_confidences=blend_leaf_confidences(model.leaf_confidences, accuracy, observed),
        outcome_count=outcome_count,
        calibrated_through=outcome_count,
        created_at=_now(),
    )
    check_model_integrity(candidate)
    return candidate, adjustments


def build_lightweight_model(
    model: RoutingModel, outcomes: Sequence[TaskOutcome], outcome_count: int
) -> RoutingModel:
    """Accuracy re-estimate only; thresholds, patterns and leaves are kept."""
    if not outcomes:
        raise InsufficientDataError("No outcomes recorded")
    candidate = replace(
        model,
        version=model.version + 1,
        accuracy=compute_accuracy(outcomes),
        outcome_count=outcome_count,
        created_at=_now(),
    )
    check_model_integrity(candidate)
    return candidate
