"""Reconciliation package."""

from .engine import ApplyOutcome, ReconciliationEngine, SyncResult
from .reporting import InconsistencyReporter

__all__ = ["ReconciliationEngine", "SyncResult", "ApplyOutcome", "InconsistencyReporter"]
