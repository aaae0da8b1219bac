"""Scheduler schemas for API requests and responses."""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

from boardsync.schemas.common import UTCDateTime


class SchedulerKind(str, Enum):
    AUTO_SYNC = "auto-sync"
    AUTO_CREATE = "auto-create"


class SchedulerControl(BaseModel):
    action: Literal["start", "stop"]
    interval: Optional[int] = Field(None, ge=1, description="Seconds between ticks")


class SchedulerStatus(BaseModel):
    kind: SchedulerKind
    running: bool = False
    interval: int
    last_run: Optional[UTCDateTime] = None
    next_run: Optional[UTCDateTime] = None
    run_count: int = 0
    skipped_count: int = 0
    last_run_summary: Optional[str] = None
    last_error: Optional[str] = None
