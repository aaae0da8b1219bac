"""Tickets as fetched from the two remote systems."""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from boardsync.schemas.common import UTCDateTime


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    value: float


class BoolValue(BaseModel):
    kind: Literal["bool"] = "bool"
    value: bool


class ListValue(BaseModel):
    kind: Literal["list"] = "list"
    value: List[str] = Field(default_factory=list)


class NullValue(BaseModel):
    kind: Literal["null"] = "null"
    value: None = None


CustomFieldValue = Annotated[
    Union[TextValue, NumberValue, BoolValue, ListValue, NullValue],
    Field(discriminator="kind"),
]


def custom_field_from_raw(raw: Any) -> CustomFieldValue:
    """Wrap an untyped remote value into the matching tagged variant."""
    if raw is None:
        return NullValue()
    # bool first: bool is an int subclass
    if isinstance(raw, bool):
        return BoolValue(value=raw)
    if isinstance(raw, (int, float)):
        return NumberValue(value=raw)
    if isinstance(raw, (list, tuple)):
        return ListValue(value=[str(item) for item in raw if item is not None])
    return TextValue(value=str(raw))


def custom_field_display(field: CustomFieldValue) -> str:
    if isinstance(field, ListValue):
        return ", ".join(field.value)
    if isinstance(field, BoolValue):
        return "true" if field.value else "false"
    if isinstance(field, NumberValue):
        return str(int(field.value)) if float(field.value).is_integer() else str(field.value)
    if isinstance(field, TextValue):
        return field.value
    return ""


class ExternalTicket(BaseModel):
    """Common shape of a ticket on either side. Immutable per reconciliation pass."""

    model_config = {"frozen": True}

    id: str = Field(..., description="Task gid or readable issue id (e.g. 'ARD-123')")
    title: str = ""
    description: str = ""
    status: Optional[str] = Field(None, description="Board column or tracker workflow state")
    tags: List[str] = Field(default_factory=list)
    creator: Optional[str] = None
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None
    custom_fields: Dict[str, CustomFieldValue] = Field(default_factory=dict)


class TaskItem(ExternalTicket):
    """A task on the board (Asana). `status` is the section/column name."""

    platform: Literal["asana"] = "asana"
    section_id: Optional[str] = None

    @property
    def column(self) -> Optional[str]:
        return self.status


class IssueItem(ExternalTicket):
    """An issue in the tracker (YouTrack). `status` is the State custom field."""

    platform: Literal["youtrack"] = "youtrack"
    subsystem: Optional[str] = None

    @property
    def state(self) -> Optional[str]:
        return self.status


Ticket = Annotated[Union[TaskItem, IssueItem], Field(discriminator="platform")]


class TicketDraft(BaseModel):
    """Values for a ticket about to be created on one side."""

    title: str
    description: str = ""
    status: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    subsystem: Optional[str] = None


def draft_from_payload(payload: Dict[str, Any]) -> TicketDraft:
    """Rebuild a draft from a ticket dump stored in a rollback snapshot."""
    return TicketDraft(
        title=payload.get("title", ""),
        description=payload.get("description", ""),
        status=payload.get("status"),
        tags=payload.get("tags") or [],
        subsystem=payload.get("subsystem"),
    )
