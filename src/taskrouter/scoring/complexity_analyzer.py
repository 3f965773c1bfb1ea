"""Complexity Analyzer - intrinsic task difficulty on a 0-10 scale.

Five factors are scored independently from keyword signals and numeric
hints, then combined with the weights carried by the current RoutingModel.
Recommendation cut points are read from the model, so a recalibrated model
takes effect without touching this module.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Final

from ..models import (
    AssigneeCategory,
    ComplexityScore,
    Recommendation,
    RoutingModel,
    TaskRequest,
    Thresholds,
)

# ═══════════════════════════════════════════════════════════════════════════
# COMPLEXITY SIGNALS
# ═══════════════════════════════════════════════════════════════════════════

# Keywords match at a word start, so "refactor" also hits "refactoring".
SIGNALS: Final[dict[str, list[str]]] = {
    "architecture": [
        "architect", "design", "system", "restructure", "distributed", "scalab",
        "microservice", "concurren", "performance", "optimi", "cache", "caching",
    ],
    "algorithm": [
        "algorithm", "recommendation", "machine learning", "ranking", "heuristic",
        "model training", "prediction", "search engine", "scheduler",
    ],
    "domain": [
        "security", "authentication", "authorization", "payment", "billing",
        "compliance", "gdpr", "hipaa", "legal", "medical", "financ", "tax",
        "encrypt", "cryptograph", "regulat", "accounting", "fraud",
    ],
    "creative": [
        "design", "creative", "novel", "innovat", "from scratch", "prototype",
        "ux", "user experience", "user interface", "brainstorm", "concept",
        "invent", "visual", "branding",
    ],
    "uncertainty": [
        "investigate", "explore", "research", "unclear", "unknown", "tbd",
        "spike", "figure out", "maybe", "ambiguous", "experiment",
        "proof of concept", "evaluate options",
    ],
    "dependency": [
        "integrat", "migrat", "third-party", "third party", "external", "api",
        "webhook", "across", "upgrade", "legacy", "vendor", "sync",
    ],
    "routine": [
        "crud", "boilerplate", "rename", "typo", "bump", "copy", "formatting",
        "lint", "scaffold", "template", "repetitive", "standard", "minor",
        "simple", "config", "add field", "changelog",
    ],
    "bugfix": ["fix", "bug", "crash", "broken", "regression", "error", "hotfix"],
    "refactor": ["refactor", "cleanup", "clean up", "simplify", "extract", "reorganiz"],
    "feature": ["implement", "build", "create", "add", "develop", "new feature", "support"],
}

SPECIALIZED_DOMAINS: Final[frozenset[str]] = frozenset(
    {
        "security", "payments", "finance", "healthcare", "legal", "compliance",
        "ml", "machine-learning", "data-science", "infrastructure", "cryptography",
    }
)

DOMAIN_TAGS: Final[frozenset[str]] = frozenset(
    {"security", "compliance", "payments", "ml", "legal", "finance", "infrastructure"}
)

CREATIVE_TAGS: Final[frozenset[str]] = frozenset(
    {"creative", "design", "ux", "ui", "research", "prototype"}
)

INTEGRATION_TAGS: Final[frozenset[str]] = frozenset({"integration", "infrastructure", "migration"})

# Category order breaks ties when naming the task type.
TASK_TYPE_SIGNALS: Final[list[tuple[str, str]]] = [
    ("creative", "creative"),
    ("bugfix", "bugfix"),
    ("refactor", "refactor"),
    ("routine", "routine"),
    ("integration", "dependency"),
    ("feature", "feature"),
]

NEUTRAL_SCORE: Final[float] = 5.0
MAX_SIGNAL_MATCHES: Final[int] = 3


# ═══════════════════════════════════════════════════════════════════════════
# SIGNAL HELPERS
# ═══════════════════════════════════════════════════════════════════════════


@lru_cache(maxsize=None)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}")


def tokenize(text: str) -> list[str]:
    """Simple tokenizer - splits on whitespace and punctuation."""
    normalized = re.sub(r"[^\w\s-]", " ", text.lower())
    return [t for t in normalized.split() if t]


def count_signals(text: str, category: str) -> int:
    """Count matching keywords for a signal category."""
    lower_text = text.lower()
    return sum(1 for keyword in SIGNALS[category] if _keyword_pattern(keyword).search(lower_text))


def has_signals(text: str, category: str) -> bool:
    return count_signals(text, category) > 0


def _capped(count: int, per_match: float, cap: int = MAX_SIGNAL_MATCHES) -> float:
    return per_match * min(count, cap)


def _clamp(value: float) -> float:
    return max(0.0, min(10.0, value))


# ═══════════════════════════════════════════════════════════════════════════
# FACTOR SCORES
# ═══════════════════════════════════════════════════════════════════════════


def score_code_complexity(task: TaskRequest) -> float:
    text = task.description
    score = 2.0
    score += _capped(count_signals(text, "architecture"), 1.5)
    score += _capped(count_signals(text, "algorithm"), 1.0)
    score -= _capped(count_signals(text, "routine"), 1.0, cap=2)

    files = task.estimated_files
    if files is not None:
        if files > 10:
            score += 3.5
        elif files > 3:
            score += 2.0
        elif files > 1:
            score += 1.0

    hours = task.estimated_hours
    if hours is not None:
        if hours > 24:
            score += 3.0
        elif hours > 8:
            score += 2.0
        elif hours > 2:
            score += 1.0

    if len(tokenize(text)) > 60:
        score += 1.0
    return _clamp(score)


def score_domain_knowledge(task: TaskRequest) -> float:
    score = 1.0
    score += _capped(count_signals(task.description, "domain"), 2.0)
    if task.domain and task.domain.lower() in SPECIALIZED_DOMAINS:
        score += 3.0
    if task.tags & DOMAIN_TAGS:
        score += 2.0
    if task.has_existing_patterns:
        score -= 1.5
    return _clamp(score)


def score_creativity(task: TaskRequest) -> float:
    text = task.description
    score = 1.0
    score += _capped(count_signals(text, "creative"), 2.0)
    score += _capped(count_signals(text, "algorithm"), 1.0, cap=2)
    if task.tags & CREATIVE_TAGS:
        score += 3.0
    if task.has_existing_patterns:
        score -= 2.0
    score -= _capped(count_signals(text, "routine"), 1.0, cap=2)
    return _clamp(score)


def score_uncertainty(task: TaskRequest) -> float:
    score = 1.0 if task.has_detailed_specs else 4.0
    score += _capped(count_signals(task.description, "uncertainty"), 2.0)
    if task.estimated_hours is None and task.estimated_files is None:
        score += 1.0
    if task.has_existing_patterns:
        score -= 1.0
    return _clamp(score)


def score_dependencies(task: TaskRequest) -> float:
    score = 1.0
    score += _capped(count_signals(task.description, "dependency"), 1.5)
    files = task.estimated_files or 0
    if files > 15:
        score += 2.0
    elif files > 5:
        score += 1.0
    if task.tags & INTEGRATION_TAGS:
        score += 2.0
    return _clamp(score)


FACTORS: Final = {
    "code_complexity": score_code_complexity,
    "domain_knowledge": score_domain_knowledge,
    "creativity": score_creativity,
    "uncertainty": score_uncertainty,
    "dependencies": score_dependencies,
}


# ═══════════════════════════════════════════════════════════════════════════
# TASK TYPE AND RECOMMENDATION
# ═══════════════════════════════════════════════════════════════════════════


def infer_task_type(task: TaskRequest) -> str:
    """Label of the dominant signal table, used in routing pattern signatures."""
    counts: dict[str, int] = {}
    for label, category in TASK_TYPE_SIGNALS:
        counts[label] = count_signals(task.description, category)
    if task.tags & CREATIVE_TAGS:
        counts["creative"] += 1
    if task.tags & INTEGRATION_TAGS:
        counts["integration"] += 1

    best_label, best_count = "general", 0
    for label, _ in TASK_TYPE_SIGNALS:
        if counts[label] > best_count:
            best_label, best_count = label, counts[label]
    return best_label


def recommend(total: float, thresholds: Thresholds) -> Recommendation:
    """Map a complexity total to an assignee category using model thresholds."""
    if total <= thresholds.ai_max:
        return Recommendation(
            AssigneeCategory.AUTOMATED,
            0.9,
            f"Complexity {total:.1f} <= {thresholds.ai_max:g}: safe to automate",
        )
    if total <= thresholds.review_max:
        return Recommendation(
            AssigneeCategory.AUTOMATED_WITH_REVIEW,
            0.7,
            f"Complexity {total:.1f} <= {thresholds.review_max:g}: automate with human review",
        )
    if total <= thresholds.human_min:
        return Recommendation(
            AssigneeCategory.HYBRID,
            0.8,
            f"Complexity {total:.1f} <= {thresholds.human_min:g}: pair human and automation",
        )
    return Recommendation(
        AssigneeCategory.HUMAN,
        0.9,
        f"Complexity {total:.1f} > {thresholds.human_min:g}: needs a human",
    )


# ═══════════════════════════════════════════════════════════════════════════
# MAIN COMPLEXITY SCORING
# ═══════════════════════════════════════════════════════════════════════════


def neutral_complexity(task: TaskRequest, model: RoutingModel, reason: str) -> ComplexityScore:
    """Mid-range, zero-confidence score for tasks that cannot be analyzed."""
    baseline = recommend(NEUTRAL_SCORE, model.thresholds)
    return ComplexityScore(
        total=NEUTRAL_SCORE,
        breakdown={name: NEUTRAL_SCORE for name in FACTORS},
        recommendation=Recommendation(baseline.assignee, 0.0, reason),
        task_type="general",
    )


def score_complexity(task: TaskRequest, model: RoutingModel) -> ComplexityScore:
    """Score a task's intrinsic difficulty.

    Returns ComplexityScore with:
        - total: weighted 0-10 score, one decimal
        - breakdown: the five factor scores
        - recommendation: assignee category from the model thresholds
        - task_type: dominant signal label

    Never raises for malformed tasks: a missing description yields a
    neutral score of 5 with confidence 0.0.
    """
    if not task.description or not task.description.strip():
        return neutral_complexity(task, model, "Invalid input: missing description")

    breakdown = {name: round(factor(task), 2) for name, factor in FACTORS.items()}
    weights = model.weights.complexity
    total = sum(breakdown[name] * weights.get(name, 0.0) for name in breakdown)
    total = round(_clamp(total), 1)

    recommendation = recommend(total, model.thresholds)
    top = max(breakdown, key=lambda name: breakdown[name])
    recommendation = Recommendation(
        recommendation.assignee,
        recommendation.confidence,
        f"{recommendation.reason} (top factor: {top} {breakdown[top]:.1f})",
    )

    return ComplexityScore(
        total=total,
        breakdown=breakdown,
        recommendation=recommendation,
        task_type=infer_task_type(task),
    )
