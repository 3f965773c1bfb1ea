"""Routing Learner - keeps the RoutingModel in step with observed outcomes.

Outcomes are appended to a bounded window without locking. Recalibrations
run on a single worker thread, so publications are serialized, and each
publishes by swapping one reference: readers of current_model() see either
the old snapshot or the new one.
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures

from taskrouter.config import EngineConfig, initial_model
from taskrouter.errors import InsufficientDataError, ModelCorruptionError
from taskrouter.feedback.calibration import build_lightweight_model, build_recalibrated_model
from taskrouter.models import RoutingModel, TaskOutcome

logger = logging.getLogger(__name__)

ModelListener = Callable[[RoutingModel], None]


class RoutingLearner:
    """Bounded-window statistical re-estimator for the routing model."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        model: RoutingModel | None = None,
        background: bool = True,
    ) -> None:
        self.config = config or EngineConfig()
        self._model = model or initial_model(self.config)
        self._window: deque[TaskOutcome] = deque(maxlen=self.config.outcome_window)
        self._counter = itertools.count(1)
        self._baseline = self._model.outcome_count
        self._recorded = self._baseline
        self._listeners: list[ModelListener] = []
        self._pending: set[Future[RoutingModel | None]] = set()
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="routing-learner")
            if background
            else None
        )

    # Public API -----------------------------------------------------------

    def current_model(self) -> RoutingModel:
        return self._model

    @property
    def window_size(self) -> int:
        return len(self._window)

    def on_publish(self, listener: ModelListener) -> None:
        """Call listener with every newly published snapshot."""
        self._listeners.append(listener)

    def record_outcome(self, outcome: TaskOutcome) -> None:
        """Append an outcome; never waits for a recalibration."""
        self._window.append(outcome)
        count = next(self._counter)
        self._recorded = self._baseline + count

        if outcome.significant:
            self._schedule(self._adjust_accuracy, tuple(self._window), self._recorded)
        if count % self.config.recalibration_batch_size == 0:
            self._schedule(self._recalibrate, tuple(self._window), self._recorded)

    def restore(self, outcomes: Iterable[TaskOutcome], outcome_count: int | None = None) -> None:
        """Seed the window from persisted outcomes without scheduling any job."""
        self.wait()
        added = list(outcomes)
        self._window.extend(added)
        self._baseline = outcome_count if outcome_count is not None else self._recorded + len(added)
        self._recorded = self._baseline
        self._counter = itertools.count(1)

    @property
    def outcomes_since_recalibration(self) -> int:
        """Outcomes recorded since the current model's last full recompute."""
        return max(0, self._recorded - self._model.calibrated_through)

    def adjust_accuracy(self) -> RoutingModel | None:
        """Run the lightweight accuracy re-estimate now over the current window."""
        self.wait()
        return self._adjust_accuracy(tuple(self._window), self._recorded)

    def recalibrate(self) -> RoutingModel | None:
        """Run a full recompute now over the current window.

        Returns:
            The published model, or None when the previous one was kept.
        """
        self.wait()
        return self._recalibrate(tuple(self._window), self._recorded)

    def wait(self) -> None:
        """Block until every scheduled recalibration has finished."""
        while True:
            pending = {f for f in self._pending.copy() if not f.done()}
            if not pending:
                return
            wait_futures(pending)

    def close(self) -> None:
        self.wait()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> RoutingLearner:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # Jobs -----------------------------------------------------------------

    def _schedule(
        self,
        job: Callable[[tuple[TaskOutcome, ...], int], RoutingModel | None],
        window: tuple[TaskOutcome, ...],
        recorded: int,
    ) -> None:
        if self._executor is None:
            job(window, recorded)
            return
        future = self._executor.submit(job, window, recorded)
        self._pending.add(future)
        future.add_done_callback(self._log_job_failure)
        future.add_done_callback(self._pending.discard)

    @staticmethod
    def _log_job_failure(future: Future[RoutingModel | None]) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Learner job failed", exc_info=exc)

    def _adjust_accuracy(
        self, window: tuple[TaskOutcome, ...], recorded: int
    ) -> RoutingModel | None:
        try:
            model = build_lightweight_model(self._model, window, recorded)
        except InsufficientDataError as exc:
            logger.info("Accuracy adjustment skipped: %s", exc.message)
            return None
        except ModelCorruptionError as exc:
            logger.error("Rejected accuracy adjustment: %s %s", exc.message, exc.details)
            return None
        self._publish(model)
        return model

    def _recalibrate(
        self, window: tuple[TaskOutcome, ...], recorded: int
    ) -> RoutingModel | None:
        try:
            model, adjustments = build_recalibrated_model(
                self._model,
                window,
                outcome_count=recorded,
                min_outcomes=self.config.min_outcomes_for_recalibration,
                step=self.config.threshold_step,
            )
        except InsufficientDataError as exc:
            logger.info("Recalibration skipped: %s", exc.message)
            return None
        except ModelCorruptionError as exc:
            logger.error("Rejected recalibrated model: %s %s", exc.message, exc.details)
            return None

        for adj in adjustments:
            logger.info(
                "%s %.1f -> %.1f (bucket %d, %d reassignments)",
                adj.parameter,
                adj.current_value,
                adj.proposed_value,
                adj.bucket,
                adj.evidence_count,
            )
        self._publish(model)
        return model

    def _publish(self, model: RoutingModel) -> None:
        self._model = model
        logger.info(
            "Published routing model v%d (%d patterns, %d outcomes)",
            model.version,
            len(model.patterns),
            model.outcome_count,
        )
        for listener in self._listeners:
            try:
                listener(model)
            except Exception:
                logger.exception("Model listener failed for v%d", model.version)
