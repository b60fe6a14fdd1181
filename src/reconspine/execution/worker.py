"""Background worker pool — polls the due index and executes operations.

The worker bridges submitted operations (DB-only) to connector calls. It
periodically reads PENDING operations whose ``next_retry_at`` has passed,
takes a per-connector concurrency slot for each, and hands them to a
thread pool that calls :meth:`OperationEngine.execute`.

Usage (programmatic)::

    from reconspine.execution.worker import OperationWorker

    worker = OperationWorker(engine)
    worker.start()  # blocks until SIGINT/SIGTERM

Usage (CLI)::

    recon worker start --threads 8 --poll-interval 2
"""

from __future__ import annotations

import os
import signal
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from reconspine.core.enums import OperationStatus
from reconspine.core.errors import InvalidTransitionError, StaleVersionError
from reconspine.core.logging import get_logger
from reconspine.core.timestamps import to_iso
from reconspine.execution.concurrency import ConnectorLimiter
from reconspine.execution.engine import OperationEngine

logger = get_logger(__name__)


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    total_dispatched: int = 0
    total_completed: int = 0
    total_retrying: int = 0
    total_dead_lettered: int = 0
    total_errors: int = 0
    total_saturated: int = 0
    total_requeued: int = 0
    last_poll_at: datetime | None = None
    active: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_dispatched": self.total_dispatched,
            "total_completed": self.total_completed,
            "total_retrying": self.total_retrying,
            "total_dead_lettered": self.total_dead_lettered,
            "total_errors": self.total_errors,
            "total_saturated": self.total_saturated,
            "total_requeued": self.total_requeued,
            "last_poll_at": to_iso(self.last_poll_at),
            "active": self.active,
        }


class OperationWorker:
    """Polls for due operations and runs them on a thread pool.

    Thread-safety:
        The poll loop is single-threaded, so an operation is dispatched at
        most once per worker; ids in flight are excluded from the next poll.
        Across workers the claim CAS in ``execute`` decides the winner and
        the loser sees :class:`StaleVersionError`.
    """

    def __init__(
        self,
        engine: OperationEngine,
        *,
        limiter: ConnectorLimiter | None = None,
        poll_interval: float | None = None,
        batch_size: int | None = None,
        max_threads: int | None = None,
        stale_check_interval: float = 60.0,
        worker_id: str | None = None,
    ):
        settings = engine.settings
        self.engine = engine
        self.limiter = limiter or ConnectorLimiter(settings)
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self._batch_size = batch_size or settings.worker_batch_size
        self._max_threads = max_threads or settings.worker_max_threads
        self._stale_check_interval = stale_check_interval
        self._last_stale_check: float | None = None

        self._shutdown = threading.Event()
        self._stats = WorkerStats()
        self._pool = ThreadPoolExecutor(
            max_workers=self._max_threads,
            thread_name_prefix=self._worker_id,
        )
        self._in_flight: set[str] = set()
        self._active_lock = threading.Lock()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the poll loop (blocking) until :meth:`stop` or SIGINT/SIGTERM."""
        logger.info(
            "worker_starting",
            worker_id=self._worker_id,
            pid=os.getpid(),
            poll_interval=self._poll_interval,
            batch_size=self._batch_size,
            threads=self._max_threads,
        )
        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except (ValueError, OSError):
            pass  # not in main thread

        try:
            while not self._shutdown.is_set():
                try:
                    self.run_once()
                except Exception:
                    logger.exception("worker_poll_error", worker_id=self._worker_id)
                self._shutdown.wait(self._poll_interval)
        finally:
            self._cleanup()

    def start_background(self) -> threading.Thread:
        """Start the worker in a daemon thread. Returns the thread."""
        t = threading.Thread(target=self.start, name=f"{self._worker_id}-loop", daemon=True)
        t.start()
        return t

    def stop(self) -> None:
        """Request graceful shutdown."""
        logger.info("worker_stopping", worker_id=self._worker_id)
        self._shutdown.set()

    def get_stats(self) -> WorkerStats:
        with self._active_lock:
            self._stats.active = len(self._in_flight)
        return self._stats

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    def run_once(self, *, wait_for_completion: bool = False) -> int:
        """One poll cycle.  Returns the number of operations dispatched."""
        self._maybe_requeue_stale()

        with self._active_lock:
            exclude = set(self._in_flight)
        due = self.engine.operations.list_due(
            self.engine.clock(), limit=self._batch_size, exclude_ids=exclude
        )
        self._stats.last_poll_at = self.engine.clock()

        futures: list[Future] = []
        for op in due:
            if not self.limiter.try_acquire(op.connector_id):
                self._stats.total_saturated += 1
                continue
            with self._active_lock:
                self._in_flight.add(op.id)
            self._stats.total_dispatched += 1
            futures.append(self._pool.submit(self._execute, op.id, op.connector_id))

        if futures:
            logger.debug("worker_dispatched", worker_id=self._worker_id, count=len(futures))
        if wait_for_completion and futures:
            wait(futures)
        return len(futures)

    def _maybe_requeue_stale(self) -> None:
        now = time.monotonic()
        if self._last_stale_check is not None and now - self._last_stale_check < self._stale_check_interval:
            return
        self._last_stale_check = now
        self._stats.total_requeued += len(self.engine.requeue_stale())

    def _execute(self, operation_id: str, connector_id: str) -> None:
        try:
            op = self.engine.execute(operation_id)
            if op.status is OperationStatus.COMPLETED:
                self._stats.total_completed += 1
            elif op.status is OperationStatus.PENDING:
                self._stats.total_retrying += 1
            elif op.status is OperationStatus.DEAD_LETTER:
                self._stats.total_dead_lettered += 1
        except (StaleVersionError, InvalidTransitionError):
            logger.debug("operation_claim_lost", worker_id=self._worker_id, operation_id=operation_id)
        except Exception:
            self._stats.total_errors += 1
            logger.exception("operation_execute_error", worker_id=self._worker_id, operation_id=operation_id)
        finally:
            self.limiter.release(connector_id)
            with self._active_lock:
                self._in_flight.discard(operation_id)

    # ------------------------------------------------------------------ #
    # Signal handling & cleanup
    # ------------------------------------------------------------------ #

    def _handle_signal(self, signum, frame):
        logger.info("worker_signal", worker_id=self._worker_id, signal=signum)
        self.stop()

    def _cleanup(self) -> None:
        self._pool.shutdown(wait=True, cancel_futures=False)
        logger.info("worker_stopped", worker_id=self._worker_id, **self._stats.to_dict())

    def close(self) -> None:
        """Release the thread pool when the worker was driven with :meth:`run_once`."""
        self._pool.shutdown(wait=True)


__all__ = ["OperationWorker", "WorkerStats"]
