from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator

from boardsync.utils.timeutils import as_utc

UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class Platform(str, Enum):
    ASANA = "asana"
    YOUTRACK = "youtrack"

    @property
    def label(self) -> str:
        return "Asana" if self is Platform.ASANA else "YouTrack"


class Direction(str, Enum):
    FORWARD = "forward"  # board -> tracker
    REVERSE = "reverse"  # tracker -> board
