from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from boardsync.schemas.common import UTCDateTime


class TicketMappingBase(BaseModel):
    task_id: str
    issue_id: str


class TicketMappingCreate(TicketMappingBase):
    pass


class TicketMapping(TicketMappingBase):
    """Durable link between one board task and one tracker issue within a user's scope."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    task_project_id: str
    issue_project_id: str
    created_at: Optional[UTCDateTime] = None


class ColumnMapping(BaseModel):
    """Board column -> tracker state. Display-only columns are shown but never synced."""

    column: str
    state: Optional[str] = None
    display_only: bool = False
    reverse_sync_priority: int = Field(0, description="Highest wins when several columns share a state")


class TagMapping(BaseModel):
    tag: str
    subsystem: str
