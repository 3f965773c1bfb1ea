"""Feedback: outcome-driven recalibration of the routing model."""

from taskrouter.feedback.calibration import (
    ThresholdAdjustment,
    adjust_thresholds,
    blend_leaf_confidences,
    build_lightweight_model,
    build_recalibrated_model,
    check_model_integrity,
    clamp_thresholds,
    clean_success,
    compute_accuracy,
    extract_patterns,
    outcomes_since_recalibration,
    reassignment_counts,
)
from taskrouter.feedback.learner import RoutingLearner

__all__ = [
    "RoutingLearner",
    "ThresholdAdjustment",
    "clean_success",
    "compute_accuracy",
    "reassignment_counts",
    "adjust_thresholds",
    "clamp_thresholds",
    "extract_patterns",
    "blend_leaf_confidences",
    "check_model_integrity",
    "build_recalibrated_model",
    "build_lightweight_model",
    "outcomes_since_recalibration",
]
