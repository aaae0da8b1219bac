from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from boardsync.schemas.common import Platform, UTCDateTime


class AuditAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    IGNORED = "ignored"
    DELETED = "deleted"
    ROLLED_BACK = "rolled_back"
    MAPPING_ADDED = "mapping_added"


class AuditLogBase(BaseModel):
    operation_id: Optional[int] = None
    user_id: int
    ticket_id: str
    platform: Platform
    action_type: AuditAction
    actor: str
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None


class AuditLogCreate(AuditLogBase):
    pass


class AuditLogEntry(AuditLogBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: UTCDateTime


class AuditLogFilter(BaseModel):
    user_id: Optional[int] = None
    ticket_id: Optional[str] = None
    platform: Optional[Platform] = None
    action_type: Optional[AuditAction] = None
    actor: Optional[str] = None
    operation_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1)
    offset: int = Field(0, ge=0)
