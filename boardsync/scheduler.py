"""APScheduler integration for the auto-sync and auto-create loops."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from boardsync.schemas.schedule import SchedulerKind, SchedulerStatus
from boardsync.utils.timeutils import as_utc, utcnow

log = logging.getLogger(__name__)

SNAPSHOT_CLEANUP_JOB_ID = "snapshot_cleanup_job"
DEFAULT_INTERVAL_SECONDS = 15

Tick = Callable[[], Awaitable[str]]


@dataclass
class LoopState:
    interval: int
    running: bool = False
    busy: bool = False  # Guard for skip-if-busy
    last_run: Optional[datetime] = None
    run_count: int = 0
    skipped_count: int = 0
    last_run_summary: Optional[str] = None
    last_error: Optional[str] = None


class SchedulerManager:
    """
    One interval job per loop on a shared AsyncIOScheduler.

    A tick never overlaps the previous tick of the same loop: a tick that fires
    while the previous one is still running is skipped, not queued. Errors are
    recorded on the loop state and never propagate to the scheduler.
    """

    def __init__(
        self,
        ticks: Dict[SchedulerKind, Tick],
        scheduler: Optional[AsyncIOScheduler] = None,
        default_intervals: Optional[Dict[SchedulerKind, int]] = None,
    ):
        self.ticks = ticks
        self.scheduler = scheduler or AsyncIOScheduler()
        intervals = default_intervals or {}
        self.states: Dict[SchedulerKind, LoopState] = {
            kind: LoopState(interval=intervals.get(kind, DEFAULT_INTERVAL_SECONDS)) for kind in ticks
        }

    @staticmethod
    def job_id(kind: SchedulerKind) -> str:
        return f"{kind.value}_job"

    def _state(self, kind: SchedulerKind) -> LoopState:
        if kind not in self.states:
            raise KeyError(f"No tick registered for {kind.value}")
        return self.states[kind]

    def start(self, kind: SchedulerKind, interval: Optional[int] = None) -> SchedulerStatus:
        """Start a loop, or replace the interval of a running one."""
        state = self._state(kind)
        if interval is not None:
            state.interval = interval
        # Remove existing job if present
        if self.scheduler.get_job(self.job_id(kind)):
            self.scheduler.remove_job(self.job_id(kind))
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=state.interval),
            args=[kind],
            id=self.job_id(kind),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if state.running:
            log.info(f"{kind.value} interval updated to {state.interval}s")
        else:
            log.info(f"{kind.value} started: every {state.interval}s")
        state.running = True
        return self.status(kind)

    def stop(self, kind: SchedulerKind) -> SchedulerStatus:
        """Stop a loop before its next tick. A tick already in flight runs to completion."""
        state = self._state(kind)
        if self.scheduler.get_job(self.job_id(kind)):
            self.scheduler.remove_job(self.job_id(kind))
            log.info(f"{kind.value} stopped")
        state.running = False
        return self.status(kind)

    def status(self, kind: SchedulerKind) -> SchedulerStatus:
        state = self._state(kind)
        next_run = None
        job = self.scheduler.get_job(self.job_id(kind))
        if job is not None:
            # Pending jobs (engine not started yet) carry no next_run_time
            next_run_time = getattr(job, "next_run_time", None)
            next_run = as_utc(next_run_time) if next_run_time else None
        return SchedulerStatus(
            kind=kind,
            running=state.running,
            interval=state.interval,
            last_run=state.last_run,
            next_run=next_run,
            run_count=state.run_count,
            skipped_count=state.skipped_count,
            last_run_summary=state.last_run_summary,
            last_error=state.last_error,
        )

    async def run_tick(self, kind: SchedulerKind) -> None:
        """Execute one tick with skip-if-busy handling."""
        state = self._state(kind)
        if not state.running:
            log.info(f"{kind.value} tick skipped: loop stopped")
            return
        if state.busy:
            state.skipped_count += 1
            log.warning(f"{kind.value} tick skipped: previous run still active")
            return

        state.busy = True
        log.debug(f"Starting {kind.value} tick")
        try:
            summary = await self.ticks[kind]()
            state.last_run_summary = summary
            state.last_error = None
            log.info(f"{kind.value} tick completed: {summary}")
        except Exception as e:
            state.last_error = str(e)
            state.last_run_summary = f"Tick failed: {e}"
            log.error(f"{kind.value} tick failed: {e}", exc_info=True)
        finally:
            state.busy = False
            state.last_run = utcnow()
            state.run_count += 1

    def schedule_snapshot_cleanup(self, cleanup: Callable[[], int], hours: int = 24) -> None:
        self.scheduler.add_job(
            cleanup,
            trigger=IntervalTrigger(hours=hours),
            id=SNAPSHOT_CLEANUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        log.info(f"Snapshot cleanup scheduled every {hours} hours")

    def start_engine(self) -> None:
        """Start the APScheduler engine. Loops stay stopped until started explicitly."""
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("APScheduler started successfully")

    def shutdown(self) -> None:
        """Shutdown the APScheduler gracefully."""
        for kind in self.states:
            self.states[kind].running = False
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("APScheduler shut down successfully")
