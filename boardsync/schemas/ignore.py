from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from boardsync.schemas.common import Platform, UTCDateTime


class IgnoreType(str, Enum):
    TEMP = "temp"
    FOREVER = "forever"


class IgnoredTicket(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    project_id: str
    ticket_id: str
    ignore_type: IgnoreType
    created_at: Optional[UTCDateTime] = None


class IgnoreRequest(BaseModel):
    ticket_id: str
    action: Literal["add", "remove"] = "add"
    type: IgnoreType = IgnoreType.TEMP
    platform: Platform = Platform.ASANA
