"""Persistence: model lineage, assignment history, outcome log."""

from taskrouter.storage.database import AssignmentStore, Database, ModelStore
from taskrouter.storage.outcome_log import OutcomeLog

__all__ = ["Database", "ModelStore", "AssignmentStore", "OutcomeLog"]
