"""reconspine — directory reconciliation and remediation engine.

Detects drift between a source-of-truth directory and connected target
systems, and drives corrective operations through a durable, idempotent
state machine with retries, conflict checks and a dead-letter queue.
"""

__version__ = "0.1.0"
