"""Reconciliation layer — drift detection, remediation, bulk actions and schedules.

Tags:
    reconspine, reconciliation

Doc-Types:
    api-reference
"""

from .bulk import BulkItem, BulkRemediationCoordinator, BulkResult
from .detection import Drift, DriftClassifier
from .remediation import RemediationOutcome, RemediationService
from .runner import ReconciliationRunner, RunReport
from .scheduler import ReconciliationScheduler, ThreadSchedulerBackend, cron_for, next_fire_time

__all__ = [
    "BulkItem",
    "BulkRemediationCoordinator",
    "BulkResult",
    "Drift",
    "DriftClassifier",
    "ReconciliationRunner",
    "ReconciliationScheduler",
    "RemediationOutcome",
    "RemediationService",
    "RunReport",
    "ThreadSchedulerBackend",
    "cron_for",
    "next_fire_time",
]
