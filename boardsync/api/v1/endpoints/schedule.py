"""Control endpoints for the auto-sync and auto-create loops."""

from typing import List

from fastapi import APIRouter, Depends

from boardsync.api.deps import get_board_sync_service
from boardsync.schemas.schedule import SchedulerControl, SchedulerKind, SchedulerStatus
from boardsync.services.board_sync import BoardSyncService

router = APIRouter()


@router.get("/", response_model=List[SchedulerStatus])
async def get_schedulers(service: BoardSyncService = Depends(get_board_sync_service)):
    """Status of both loops."""
    return service.scheduler_status()


@router.post("/{which}", response_model=SchedulerStatus)
async def control_scheduler(
    which: SchedulerKind,
    control: SchedulerControl,
    service: BoardSyncService = Depends(get_board_sync_service),
):
    """Start (or change the interval of) or stop one loop."""
    return service.scheduler_control(which, control.action, control.interval)
