from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from boardsync.schemas.common import Direction, Platform, UTCDateTime


class OperationType(str, Enum):
    SYNC = "sync"
    CREATE = "create"
    DELETE = "delete"
    ROLLBACK = "rollback"


class OperationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED, OperationStatus.ROLLED_BACK)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"
    SKIPPED = "skipped"


class DeleteSource(str, Enum):
    ASANA = "asana"
    YOUTRACK = "youtrack"
    BOTH = "both"

    @property
    def platforms(self) -> List[Platform]:
        if self is DeleteSource.BOTH:
            return [Platform.ASANA, Platform.YOUTRACK]
        return [Platform(self.value)]

    @property
    def label(self) -> str:
        if self is DeleteSource.BOTH:
            return "Asana and YouTrack"
        return Platform(self.value).label


class SyncScope(BaseModel):
    """Who is acting and on which project pair."""

    user_id: int
    task_project_id: str
    issue_project_id: str
    actor: str = "system"

    def project_for(self, platform: Platform) -> str:
        return self.task_project_id if platform == Platform.ASANA else self.issue_project_id


class SideResult(BaseModel):
    """Result of one remote call for one ticket (e.g. one side of a delete)."""

    platform: Platform
    ticket_id: Optional[str] = None
    status: OutcomeStatus
    error: Optional[str] = None


class TicketOutcome(BaseModel):
    ticket_id: str
    title: str = ""
    status: OutcomeStatus
    message: str = ""
    counterpart_id: Optional[str] = None
    sides: List[SideResult] = Field(default_factory=list)
    error: Optional[str] = None


class SyncOperation(BaseModel):
    """One attempted batch and its per-ticket outcomes."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: int
    project_id: str
    operation_type: OperationType
    direction: Direction = Direction.FORWARD
    trigger: str = "manual"
    ticket_ids: List[str] = Field(default_factory=list)
    status: OperationStatus = OperationStatus.PENDING
    results: List[TicketOutcome] = Field(default_factory=list)
    summary: str = ""
    error_message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None
    created_at: Optional[UTCDateTime] = None

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for r in self.results if r.status == status)


class ExecuteRequest(BaseModel):
    operation_type: OperationType
    ticket_ids: List[str] = Field(default_factory=list)
    source: Optional[DeleteSource] = None
    direction: Direction = Direction.FORWARD
