"""Counterpart resolution between the two systems.

Order of evidence: explicit mapping, the sync marker written into created issue
descriptions, a tracker id prefixed to a board title, then a normalized title
match. More than one heuristic candidate is never guessed: the ticket resolves
as ambiguous and is routed to Missing / Orphaned for a human to decide.
"""

import re
from typing import Dict, List, Optional, Sequence

from boardsync.schemas.common import Direction
from boardsync.schemas.mapping import TicketMapping
from boardsync.schemas.reconcile import Resolution, ResolutionKind
from boardsync.schemas.ticket import ExternalTicket

SYNC_MARKER = "[Synced from Asana ID: {gid}]"

_MARKER_RE = re.compile(r"Asana ID:\s*([\w-]+)")
_ID_PREFIX_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9]*-\d+)\b[\s:.\-]*")


def sync_marker(task_id: str) -> str:
    return SYNC_MARKER.format(gid=task_id)


def extract_marker_id(text: Optional[str]) -> Optional[str]:
    match = _MARKER_RE.search(text or "")
    return match.group(1) if match else None


def strip_marker(text: Optional[str]) -> str:
    return re.sub(r"\[Synced from Asana ID:\s*[\w-]+\]", "", text or "").strip()


def extract_id_prefix(title: Optional[str]) -> Optional[str]:
    match = _ID_PREFIX_RE.match(title or "")
    return match.group(1).upper() if match else None


def strip_id_prefix(title: Optional[str]) -> str:
    return _ID_PREFIX_RE.sub("", title or "", count=1)


def normalize_title(title: Optional[str]) -> str:
    return " ".join(strip_id_prefix(title).split()).casefold()


class IdentityResolver:
    """Resolves source tickets against one target set. Pure and read-only."""

    def __init__(
        self,
        mappings: Sequence[TicketMapping],
        targets: Sequence[ExternalTicket],
        direction: Direction = Direction.FORWARD,
    ):
        self.direction = direction
        self.targets: Dict[str, ExternalTicket] = {t.id: t for t in targets}

        if direction == Direction.FORWARD:
            self.explicit = {m.task_id: m.issue_id for m in mappings}
        else:
            self.explicit = {m.issue_id: m.task_id for m in mappings}
        self.claimed = set(self.explicit.values())

        self._by_title: Dict[str, List[str]] = {}
        self._by_marker: Dict[str, List[str]] = {}
        self._by_prefix: Dict[str, List[str]] = {}
        for target in sorted(targets, key=lambda t: t.id):
            if target.id in self.claimed:
                continue
            title_key = normalize_title(target.title)
            if title_key:
                self._by_title.setdefault(title_key, []).append(target.id)
            marker = extract_marker_id(target.description)
            if marker:
                self._by_marker.setdefault(marker, []).append(target.id)
            prefix = extract_id_prefix(target.title)
            if prefix:
                self._by_prefix.setdefault(prefix, []).append(target.id)

    def resolve(self, ticket: ExternalTicket) -> Resolution:
        if ticket.id in self.explicit:
            counterpart = self.explicit[ticket.id]
            if counterpart in self.targets:
                return Resolution(kind=ResolutionKind.MAPPED, counterpart_id=counterpart)
            # Mapped counterpart no longer exists; do not re-link by heuristics
            return Resolution(kind=ResolutionKind.STALE, candidates=[counterpart])

        for kind, candidates in (
            (ResolutionKind.MARKER, self._marker_candidates(ticket)),
            (ResolutionKind.PREFIX, self._prefix_candidates(ticket)),
            (ResolutionKind.TITLE, self._by_title.get(normalize_title(ticket.title), [])),
        ):
            if len(candidates) == 1:
                return Resolution(kind=kind, counterpart_id=candidates[0])
            if len(candidates) > 1:
                return Resolution(kind=ResolutionKind.AMBIGUOUS, candidates=sorted(candidates))
        return Resolution(kind=ResolutionKind.NONE)

    def _marker_candidates(self, ticket: ExternalTicket) -> List[str]:
        if self.direction == Direction.FORWARD:
            return self._by_marker.get(ticket.id, [])
        # Reverse: the issue carries the marker naming its task
        marker = extract_marker_id(ticket.description)
        if marker and marker in self.targets and marker not in self.claimed:
            return [marker]
        return []

    def _prefix_candidates(self, ticket: ExternalTicket) -> List[str]:
        if self.direction == Direction.FORWARD:
            prefix = extract_id_prefix(ticket.title)
            if prefix and prefix in self.targets and prefix not in self.claimed:
                return [prefix]
            return []
        return self._by_prefix.get(ticket.id.upper(), [])


def resolve(
    ticket: ExternalTicket,
    mappings: Sequence[TicketMapping],
    targets: Sequence[ExternalTicket],
    direction: Direction = Direction.FORWARD,
) -> Resolution:
    """One-off resolution. Build an IdentityResolver when resolving many tickets."""
    return IdentityResolver(mappings, targets, direction).resolve(ticket)
