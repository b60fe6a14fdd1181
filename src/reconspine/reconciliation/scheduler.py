"""Reconciliation scheduling — recurring runs per connector.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER ARCHITECTURE                                                      │
│                                                                              │
│   ThreadSchedulerBackend ── every interval ──► ReconciliationScheduler.tick  │
│                                                    │                         │
│                                                    ▼                         │
│                              ScheduleRepository.get_due(now)                 │
│                                                    │                         │
│                       for each: claim (CAS on next_run_at)                   │
│                                 │ won                                        │
│                                 ▼                                            │
│                       ReconciliationRunner.trigger_run(trigger=schedule)     │
│                                 │                                            │
│                                 ▼                                            │
│                       record last_run_id                                     │
│                                                                              │
│  Fire times (UTC, minute 0):                                                 │
│    hourly   "0 * * * *"                                                      │
│    daily    "0 {hour_of_day} * * *"                                          │
│    weekly   "0 {hour_of_day} * * {day_of_week}"     day_of_week 0=Sunday     │
│    monthly  "0 {hour_of_day} {day_of_month} * *"    day_of_month 1-28        │
│    cron     cron_expression, validated with croniter                         │
│                                                                              │
│  Missed slots are not replayed: the next fire time is computed from the     │
│  tick time, so a scheduler that was down fires once and moves on.            │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    reconspine, scheduling, cron, croniter

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from croniter import croniter

from reconspine.core.connection import transaction
from reconspine.core.enums import Frequency, RunMode, RunTrigger, parse_enum
from reconspine.core.errors import NotFoundError, ReconError, ScheduleError, ValidationError
from reconspine.core.logging import get_logger
from reconspine.core.models import Schedule
from reconspine.core.protocols import Connection
from reconspine.core.repositories import ScheduleRepository
from reconspine.core.timestamps import Clock, new_id, utcnow
from reconspine.reconciliation.runner import ReconciliationRunner

logger = get_logger(__name__)


def _check_range(value: int | None, field: str, low: int, high: int) -> None:
    if value is not None and not low <= value <= high:
        raise ValidationError(f"{field} must be between {low} and {high}, got {value}", field=field)


def cron_for(
    frequency: Frequency | str,
    *,
    cron_expression: str | None = None,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    hour_of_day: int | None = None,
) -> str:
    """Validate a schedule definition and return its cron expression.

    Raises:
        ValidationError: Missing, out-of-range or contradictory fields.
    """
    frequency = parse_enum(Frequency, frequency, "frequency")

    if frequency is Frequency.CRON:
        if not cron_expression:
            raise ValidationError("cron_expression is required for frequency 'cron'", field="cron_expression")
        if not croniter.is_valid(cron_expression):
            raise ValidationError(f"Invalid cron expression '{cron_expression}'", field="cron_expression")
        return cron_expression
    if cron_expression:
        raise ValidationError(
            "cron_expression is only allowed with frequency 'cron'", field="cron_expression"
        )

    _check_range(hour_of_day, "hour_of_day", 0, 23)
    _check_range(day_of_week, "day_of_week", 0, 6)
    _check_range(day_of_month, "day_of_month", 1, 28)
    hour = hour_of_day if hour_of_day is not None else 0

    if frequency is Frequency.HOURLY:
        return "0 * * * *"
    if frequency is Frequency.DAILY:
        return f"0 {hour} * * *"
    if frequency is Frequency.WEEKLY:
        if day_of_week is None:
            raise ValidationError("day_of_week is required for frequency 'weekly'", field="day_of_week")
        return f"0 {hour} * * {day_of_week}"
    if day_of_month is None:
        raise ValidationError("day_of_month is required for frequency 'monthly'", field="day_of_month")
    return f"0 {hour} {day_of_month} * *"


def next_fire_time(schedule: Schedule, after: datetime) -> datetime:
    """First fire time of *schedule* strictly after *after*."""
    expression = cron_for(
        schedule.frequency,
        cron_expression=schedule.cron_expression,
        day_of_week=schedule.day_of_week,
        day_of_month=schedule.day_of_month,
        hour_of_day=schedule.hour_of_day,
    )
    return croniter(expression, after).get_next(datetime)


class ReconciliationScheduler:
    """Schedule management plus the tick that fires due runs."""

    def __init__(
        self,
        conn: Connection,
        runner: ReconciliationRunner | None = None,
        *,
        clock: Clock = utcnow,
    ):
        self.conn = conn
        self.runner = runner
        self.clock = clock
        self.schedules = ScheduleRepository(conn)
        self._backend: ThreadSchedulerBackend | None = None

    # ------------------------------------------------------------------ #
    # Management
    # ------------------------------------------------------------------ #

    def get(self, connector_id: str) -> Schedule:
        schedule = self.schedules.get_by_connector(connector_id)
        if schedule is None:
            raise NotFoundError("Schedule", connector_id)
        return schedule

    def upsert(
        self,
        connector_id: str,
        *,
        mode: RunMode | str,
        frequency: Frequency | str,
        cron_expression: str | None = None,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        hour_of_day: int | None = None,
        enabled: bool = True,
        dry_run: bool = False,
    ) -> Schedule:
        """Create or replace the schedule of *connector_id*.

        With *dry_run* the validated schedule, including its next fire time,
        is returned without being stored.
        """
        if not connector_id:
            raise ValidationError("connector_id is required", field="connector_id")
        mode = parse_enum(RunMode, mode, "mode")
        frequency = parse_enum(Frequency, frequency, "frequency")
        cron_for(
            frequency,
            cron_expression=cron_expression,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            hour_of_day=hour_of_day,
        )
        now = self.clock()
        existing = self.schedules.get_by_connector(connector_id)
        schedule = Schedule(
            id=existing.id if existing else new_id(),
            connector_id=connector_id,
            mode=mode,
            frequency=frequency,
            cron_expression=cron_expression or None,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            hour_of_day=hour_of_day,
            enabled=enabled,
            last_run_at=existing.last_run_at if existing else None,
            last_run_id=existing.last_run_id if existing else None,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        schedule.next_run_at = next_fire_time(schedule, now) if enabled else None
        if dry_run:
            return schedule

        with transaction(self.conn):
            self.schedules.upsert(schedule)
        logger.info(
            "schedule_upserted",
            connector_id=connector_id,
            frequency=frequency.value,
            next_run_at=schedule.next_run_at.isoformat() if schedule.next_run_at else None,
        )
        return self.get(connector_id)

    def set_enabled(self, connector_id: str, enabled: bool) -> Schedule:
        schedule = self.get(connector_id)
        now = self.clock()
        next_run_at = next_fire_time(schedule, now) if enabled else None
        with transaction(self.conn):
            self.schedules.set_enabled(connector_id, enabled, next_run_at=next_run_at, updated_at=now)
        logger.info("schedule_toggled", connector_id=connector_id, enabled=enabled)
        return self.get(connector_id)

    def delete(self, connector_id: str) -> None:
        with transaction(self.conn):
            if not self.schedules.delete(connector_id):
                raise NotFoundError("Schedule", connector_id)
        logger.info("schedule_deleted", connector_id=connector_id)

    # ------------------------------------------------------------------ #
    # Firing
    # ------------------------------------------------------------------ #

    def tick(self, now: datetime | None = None) -> list[str]:
        """Fire every due schedule once.  Returns the ids of the runs started."""
        if self.runner is None:
            raise ScheduleError("A ReconciliationRunner is required to fire schedules")
        now = now or self.clock()
        fired: list[str] = []
        for schedule in self.schedules.get_due(now):
            with transaction(self.conn):
                claimed = self.schedules.claim(
                    schedule.id,
                    expected_next_run_at=schedule.next_run_at,
                    next_run_at=next_fire_time(schedule, now),
                    fired_at=now,
                )
            if not claimed:
                continue
            try:
                report = self.runner.trigger_run(
                    schedule.connector_id, schedule.mode, trigger=RunTrigger.SCHEDULE
                )
            except ReconError as exc:
                logger.error(
                    "schedule_fire_failed",
                    connector_id=schedule.connector_id,
                    error=exc.message,
                )
                continue
            with transaction(self.conn):
                self.schedules.record_run(schedule.id, report.run.id)
            fired.append(report.run.id)
        if fired:
            logger.info("schedules_fired", count=len(fired))
        return fired

    def start(self, interval_seconds: float) -> None:
        """Tick on a daemon thread every *interval_seconds*."""
        if self._backend is None:
            self._backend = ThreadSchedulerBackend()
        self._backend.start(self.tick, interval_seconds=interval_seconds)

    def stop(self) -> None:
        if self._backend is not None:
            self._backend.stop()

    def health(self) -> dict[str, Any]:
        if self._backend is None:
            return {"healthy": False, "backend": ThreadSchedulerBackend.name, "tick_count": 0}
        return self._backend.health()


class ThreadSchedulerBackend:
    """Threading-based tick loop.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(scheduler.tick, interval_seconds=30.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 30.0
        self._started = False
        self._lock = threading.Lock()

    def start(self, tick_callback: Callable[[], Any], interval_seconds: float = 30.0) -> None:
        if self._started:
            logger.warning("scheduler_backend_already_started")
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("scheduler_backend_started", interval_seconds=interval_seconds)
            while not self._stop_event.wait(interval_seconds):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = utcnow()
                try:
                    tick_callback()
                except Exception:
                    logger.exception("scheduler_tick_failed")
            logger.info("scheduler_backend_stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="recon-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop the loop, waiting up to 5 seconds for the current tick."""
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("scheduler_thread_still_running")
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "interval_seconds": self._interval,
        }


__all__ = [
    "ReconciliationScheduler",
    "ThreadSchedulerBackend",
    "cron_for",
    "next_fire_time",
]
