from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from boardsync.schemas.common import Direction
from boardsync.schemas.ticket import Ticket


class ResolutionKind(str, Enum):
    MAPPED = "mapped"
    MARKER = "marker"
    PREFIX = "prefix"
    TITLE = "title"
    AMBIGUOUS = "ambiguous"
    STALE = "stale"
    NONE = "none"


class Resolution(BaseModel):
    kind: ResolutionKind
    counterpart_id: Optional[str] = None
    candidates: List[str] = Field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.counterpart_id is not None and self.kind not in (
            ResolutionKind.AMBIGUOUS, ResolutionKind.STALE, ResolutionKind.NONE
        )

    @property
    def heuristic(self) -> bool:
        return self.kind in (ResolutionKind.MARKER, ResolutionKind.PREFIX, ResolutionKind.TITLE)


class FieldMismatch(BaseModel):
    field: str  # 'status', 'subsystem', 'title', 'description'
    source_value: Optional[str] = None
    target_value: Optional[str] = None


class TicketPair(BaseModel):
    source: Ticket
    target: Ticket
    resolution: ResolutionKind
    mismatches: List[FieldMismatch] = Field(default_factory=list)

    @property
    def ticket_id(self) -> str:
        return self.source.id

    @property
    def tag_mismatch(self) -> bool:
        return any(m.field == "subsystem" for m in self.mismatches)

    @property
    def status_mismatch(self) -> bool:
        return any(m.field == "status" for m in self.mismatches)


class MissingTicket(BaseModel):
    """A source ticket with no counterpart: a create candidate."""

    ticket: Ticket
    stale_counterpart_id: Optional[str] = None
    ambiguous_candidates: List[str] = Field(default_factory=list)

    @property
    def ticket_id(self) -> str:
        return self.ticket.id


class FindingsAlert(BaseModel):
    source: Optional[Ticket] = None
    target: Ticket
    message: str

    @property
    def ticket_id(self) -> str:
        return self.source.id if self.source else self.target.id


class DisplayOnlyTicket(BaseModel):
    """Visible for reporting, never synced. `reason` is 'display_only' or 'unmapped'."""

    ticket: Ticket
    counterpart: Optional[Ticket] = None
    reason: str

    @property
    def ticket_id(self) -> str:
        return self.ticket.id


class ReconciliationResult(BaseModel):
    direction: Direction = Direction.FORWARD
    matched: List[TicketPair] = Field(default_factory=list)
    mismatched: List[TicketPair] = Field(default_factory=list)
    missing: List[MissingTicket] = Field(default_factory=list)
    orphaned: List[Ticket] = Field(default_factory=list)
    findings_alerts: List[FindingsAlert] = Field(default_factory=list)
    display_only: List[DisplayOnlyTicket] = Field(default_factory=list)
    ignored: List[Ticket] = Field(default_factory=list)
    filtered_out: int = 0

    def find_missing(self, ticket_id: str) -> Optional[MissingTicket]:
        return next((m for m in self.missing if m.ticket_id == ticket_id), None)

    def find_mismatched(self, ticket_id: str) -> Optional[TicketPair]:
        return next((p for p in self.mismatched if p.ticket_id == ticket_id), None)

    def find_ticket(self, ticket_id: str) -> Optional[Ticket]:
        """Look a ticket up in any bucket, on either side."""
        for pair in self.matched + self.mismatched:
            if pair.source.id == ticket_id:
                return pair.source
            if pair.target.id == ticket_id:
                return pair.target
        for missing in self.missing:
            if missing.ticket.id == ticket_id:
                return missing.ticket
        for ticket in self.orphaned + self.ignored:
            if ticket.id == ticket_id:
                return ticket
        for alert in self.findings_alerts:
            if alert.source and alert.source.id == ticket_id:
                return alert.source
            if alert.target.id == ticket_id:
                return alert.target
        for entry in self.display_only:
            if entry.ticket.id == ticket_id:
                return entry.ticket
            if entry.counterpart and entry.counterpart.id == ticket_id:
                return entry.counterpart
        return None

    def find_counterpart(self, ticket_id: str) -> Optional[Ticket]:
        """The paired ticket on the other side, if the analysis paired this one."""
        pairs = [(p.source, p.target) for p in self.matched + self.mismatched]
        pairs += [(a.source, a.target) for a in self.findings_alerts if a.source]
        pairs += [(d.ticket, d.counterpart) for d in self.display_only if d.counterpart]
        for source, target in pairs:
            if source.id == ticket_id:
                return target
            if target.id == ticket_id:
                return source
        return None

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "matched": len(self.matched),
            "mismatched": len(self.mismatched),
            "missing": len(self.missing),
            "orphaned": len(self.orphaned),
            "findings_alerts": len(self.findings_alerts),
            "display_only": len(self.display_only),
            "ignored": len(self.ignored),
        }

    @property
    def sync_health(self) -> float:
        """Percentage of sync-eligible tickets that are already in agreement."""
        eligible = len(self.matched) + len(self.mismatched) + len(self.missing)
        if eligible == 0:
            return 100.0
        return round(len(self.matched) * 100.0 / eligible, 1)


class AnalysisResponse(ReconciliationResult):
    counts_by_bucket: Dict[str, int] = Field(default_factory=dict)
    health: float = 100.0

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> "AnalysisResponse":
        return cls(**dict(result), counts_by_bucket=result.counts, health=result.sync_health)
