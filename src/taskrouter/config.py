"""Engine configuration.

Defaults live on EngineConfig; a JSON file in the data directory may
override any of them. Unreadable files fall back to defaults.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Final, Mapping

from .errors import ConfigurationError
from .models import (
    DEFAULT_COMPLEXITY_WEIGHTS,
    DEFAULT_LEAF_CONFIDENCES,
    DEFAULT_PRIORITY_WEIGHTS,
    DecisionWeights,
    RoutingModel,
    Thresholds,
)

logger = logging.getLogger(__name__)

HOME_ENV_VAR: Final[str] = "TASKROUTER_HOME"
CONFIG_FILENAME: Final[str] = "config.json"


def default_data_dir() -> Path:
    """Data directory: $TASKROUTER_HOME or ~/.taskrouter."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".taskrouter"


@dataclass(frozen=True)
class EngineConfig:
    """Capacity limits, learner cadence and initial model parameters."""

    max_human_tasks: int = 5
    max_ai_tasks: int = 20
    max_human_hours_per_day: float = 6.0
    api_call_limit: int = 1000
    api_calls_per_task: int = 10
    default_task_hours: float = 2.0
    workday_start: int = 9
    workday_end: int = 17

    recalibration_batch_size: int = 100
    min_outcomes_for_recalibration: int = 10
    outcome_window: int = 1000
    threshold_step: float = 0.5

    ai_max: float = 3.0
    review_max: float = 5.0
    human_min: float = 7.0
    complexity_weights: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COMPLEXITY_WEIGHTS)
    )
    priority_weights: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS)
    )
    availability_weight: float = 0.4
    suitability_weight: float = 0.6

    def __post_init__(self) -> None:
        for name in ("max_human_tasks", "max_ai_tasks", "api_call_limit", "recalibration_batch_size"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.max_human_hours_per_day <= 0:
            raise ConfigurationError(
                f"max_human_hours_per_day must be positive, got {self.max_human_hours_per_day}"
            )
        if not 0 <= self.workday_start < self.workday_end <= 24:
            raise ConfigurationError(
                f"Invalid workday {self.workday_start}-{self.workday_end}"
            )
        if not 1.0 <= self.ai_max < self.human_min <= 10.0:
            raise ConfigurationError(
                f"Thresholds must satisfy 1 <= ai_max < human_min <= 10, "
                f"got ai_max={self.ai_max} human_min={self.human_min}"
            )
        if not self.ai_max <= self.review_max <= self.human_min:
            raise ConfigurationError(
                f"review_max {self.review_max} must lie between ai_max and human_min"
            )
        if self.outcome_window < self.recalibration_batch_size:
            raise ConfigurationError("outcome_window must hold at least one recalibration batch")
        missing = set(DEFAULT_COMPLEXITY_WEIGHTS) - set(self.complexity_weights)
        if missing:
            raise ConfigurationError(f"Missing complexity weights: {sorted(missing)}")
        missing = set(DEFAULT_PRIORITY_WEIGHTS) - set(self.priority_weights)
        if missing:
            raise ConfigurationError(f"Missing priority weights: {sorted(missing)}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EngineConfig:
        """Build a config from known keys; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {k: v for k, v in data.items() if k in known}
        if "complexity_weights" in values:
            values["complexity_weights"] = {
                **DEFAULT_COMPLEXITY_WEIGHTS,
                **values["complexity_weights"],
            }
        if "priority_weights" in values:
            values["priority_weights"] = {**DEFAULT_PRIORITY_WEIGHTS, **values["priority_weights"]}
        return cls(**values)


def load_config(path: Path | None = None) -> EngineConfig:
    """Load configuration from a JSON file or use defaults.

    Args:
        path: Path to a config file. If None, uses <data dir>/config.json.

    Returns:
        EngineConfig with file values merged over defaults.
    """
    config_path = path or default_data_dir() / CONFIG_FILENAME
    if not config_path.exists():
        return EngineConfig()

    try:
        with config_path.open("r") as f:
            data = json.load(f)
        return EngineConfig.from_dict(data)
    except (OSError, json.JSONDecodeError, TypeError, ConfigurationError) as exc:
        logger.warning("Ignoring config file %s: %s", config_path, exc)
        return EngineConfig()


def initial_model(config: EngineConfig) -> RoutingModel:
    """First model snapshot, built from configuration."""
    return RoutingModel(
        version=1,
        thresholds=Thresholds(
            ai_max=config.ai_max,
            review_max=config.review_max,
            human_min=config.human_min,
        ),
        weights=DecisionWeights(
            complexity=config.complexity_weights,
            priority=config.priority_weights,
            availability=config.availability_weight,
            suitability=config.suitability_weight,
        ),
        leaf_confidences=dict(DEFAULT_LEAF_CONFIDENCES),
    )
