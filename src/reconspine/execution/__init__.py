"""Execution layer — operation state machine, retries, conflicts and workers.

Tags:
    reconspine, execution

Doc-Types:
    api-reference
"""

from .concurrency import ConnectorLimiter
from .conflicts import ConflictDecision, ConflictResolver, DefaultConflictPolicy
from .connectors import ConnectorRegistry, load_registry
from .engine import OperationEngine
from .retry import ExponentialBackoff, RetryStrategy
from .dlq import DeadLetterManager
from .worker import OperationWorker

__all__ = [
    "ConflictDecision",
    "ConflictResolver",
    "ConnectorLimiter",
    "ConnectorRegistry",
    "DeadLetterManager",
    "DefaultConflictPolicy",
    "ExponentialBackoff",
    "OperationEngine",
    "OperationWorker",
    "RetryStrategy",
    "load_registry",
]
