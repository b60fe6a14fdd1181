"""Repositories — one per aggregate, all built on :class:`BaseRepository`.

Tags:
    reconspine, repository

Doc-Types:
    api-reference
"""

from .actions import RemediationActionRepository
from .attempts import AttemptRepository
from .conflicts import ConflictRepository
from .discrepancies import DiscrepancyRepository
from .operations import OperationRepository
from .runs import RunRepository
from .schedules import ScheduleRepository

__all__ = [
    "AttemptRepository",
    "ConflictRepository",
    "DiscrepancyRepository",
    "OperationRepository",
    "RemediationActionRepository",
    "RunRepository",
    "ScheduleRepository",
]
