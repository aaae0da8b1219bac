import asyncio

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from boardsync.exceptions import ConfigurationError
from boardsync.scheduler import SNAPSHOT_CLEANUP_JOB_ID, SchedulerManager
from boardsync.schemas.schedule import SchedulerKind
from boardsync.schemas.sync import OperationType
from tests.fakes import issue, task


class RecordingTick:
    def __init__(self, result="ok", error=None):
        self.calls = 0
        self.result = result
        self.error = error
        self.release = None

    async def __call__(self):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def tick():
    return RecordingTick(result="Synced 1 of 1 tickets")


@pytest.fixture
def manager(tick):
    # Engine never started: jobs stay pending and never fire on their own
    return SchedulerManager(
        ticks={SchedulerKind.AUTO_SYNC: tick, SchedulerKind.AUTO_CREATE: RecordingTick()},
        scheduler=AsyncIOScheduler(),
        default_intervals={SchedulerKind.AUTO_SYNC: 30},
    )


def test_start_is_idempotent(manager):
    manager.start(SchedulerKind.AUTO_SYNC)
    status = manager.start(SchedulerKind.AUTO_SYNC, interval=60)

    assert status.running
    assert status.interval == 60
    assert [job.id for job in manager.scheduler.get_jobs()] == ["auto-sync_job"]


def test_default_intervals(manager):
    assert manager.status(SchedulerKind.AUTO_SYNC).interval == 30
    assert manager.status(SchedulerKind.AUTO_CREATE).interval == 15


def test_stop_removes_job(manager):
    manager.start(SchedulerKind.AUTO_SYNC)
    status = manager.stop(SchedulerKind.AUTO_SYNC)

    assert not status.running
    assert status.next_run is None
    assert manager.scheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_tick_records_summary(manager, tick):
    manager.start(SchedulerKind.AUTO_SYNC)
    await manager.run_tick(SchedulerKind.AUTO_SYNC)

    status = manager.status(SchedulerKind.AUTO_SYNC)
    assert status.run_count == 1
    assert status.last_run is not None
    assert status.last_run_summary == "Synced 1 of 1 tickets"
    assert status.last_error is None


@pytest.mark.asyncio
async def test_stopped_loop_does_not_tick(manager, tick):
    await manager.run_tick(SchedulerKind.AUTO_SYNC)
    assert tick.calls == 0


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(manager, tick):
    tick.release = asyncio.Event()
    manager.start(SchedulerKind.AUTO_SYNC)

    first = asyncio.create_task(manager.run_tick(SchedulerKind.AUTO_SYNC))
    await asyncio.sleep(0)
    await manager.run_tick(SchedulerKind.AUTO_SYNC)
    tick.release.set()
    await first

    status = manager.status(SchedulerKind.AUTO_SYNC)
    assert tick.calls == 1
    assert status.skipped_count == 1
    assert status.run_count == 1


@pytest.mark.asyncio
async def test_tick_error_is_recorded(manager):
    manager.ticks[SchedulerKind.AUTO_CREATE] = RecordingTick(error=RuntimeError("boom"))
    manager.start(SchedulerKind.AUTO_CREATE)

    await manager.run_tick(SchedulerKind.AUTO_CREATE)

    status = manager.status(SchedulerKind.AUTO_CREATE)
    assert status.last_error == "boom"
    assert status.last_run_summary == "Tick failed: boom"
    assert manager.states[SchedulerKind.AUTO_CREATE].busy is False


def test_snapshot_cleanup_job(manager):
    manager.schedule_snapshot_cleanup(lambda: 0, hours=12)
    assert manager.scheduler.get_job(SNAPSHOT_CLEANUP_JOB_ID) is not None


def test_service_requires_attached_scheduler(service):
    with pytest.raises(ConfigurationError):
        service.scheduler_status()
    with pytest.raises(ConfigurationError):
        service.scheduler_control(SchedulerKind.AUTO_SYNC, "start")


@pytest.mark.asyncio
async def test_auto_sync_tick_pushes_mismatches(service, storage, board, tracker, scope):
    board.add(task("T-2", "Harden session cookies", "In Progress", ["Security"]))
    tracker.add(issue("I-7", "Harden session cookies", "In Progress", "backend"))
    storage.create_mapping(scope.user_id, scope.task_project_id, "T-2", scope.issue_project_id, "I-7")

    assert await service.auto_sync_tick(scope) == "Successfully synced all 1 tickets to YouTrack"
    assert await service.auto_sync_tick(scope) == "No mismatched tickets"

    operation = storage.list_operations(scope.user_id)[0]
    assert operation.operation_type == OperationType.SYNC
    assert operation.trigger == "auto-sync"


@pytest.mark.asyncio
async def test_auto_create_tick(service, board, scope):
    board.add(task("T-1", "Fix login bug", "Backlog"))

    assert await service.auto_create_tick(scope) == "Successfully created all 1 tickets in YouTrack"
    assert await service.auto_create_tick(scope) == "No missing tickets"
