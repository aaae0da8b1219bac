from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from boardsync.schemas.common import Platform, UTCDateTime
from boardsync.utils.timeutils import as_utc


class ChangeKind(str, Enum):
    CREATED = "created"
    FIELD_UPDATED = "field_updated"
    DELETED = "deleted"
    MAPPING_ADDED = "mapping_added"
    MAPPING_REMOVED = "mapping_removed"


class SnapshotChange(BaseModel):
    """One mutation performed by an operation, with enough data to invert it."""

    kind: ChangeKind
    platform: Platform
    ticket_id: str
    source_ticket_id: Optional[str] = None
    field_name: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    payload: Optional[Dict[str, Any]] = None  # full ticket dump for deletions
    mapping: Optional[Dict[str, str]] = None  # {"task_id": ..., "issue_id": ...}


class RollbackSnapshot(BaseModel):
    """Pre-operation state of every ticket an operation touches, keyed 1:1 to the operation."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    operation_id: Optional[int] = None
    user_id: int
    tickets: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="'<platform>:<id>' -> field values before the operation"
    )
    changes: List[SnapshotChange] = Field(default_factory=list)
    created_at: Optional[UTCDateTime] = None
    expires_at: UTCDateTime

    def is_expired(self, now: datetime) -> bool:
        return as_utc(now) >= self.expires_at

    def record(self, change: SnapshotChange) -> None:
        self.changes.append(change)
