"""Translation between board vocabulary (columns, tags) and tracker vocabulary (states, subsystems)."""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from boardsync.schemas.mapping import ColumnMapping

log = logging.getLogger(__name__)

DISPLAY_ONLY = "DISPLAY_ONLY"

DEFAULT_COLUMN_MAPPINGS: List[ColumnMapping] = [
    ColumnMapping(column="Backlog", state="Backlog", reverse_sync_priority=1),
    ColumnMapping(column="In Progress", state="In Progress", reverse_sync_priority=1),
    ColumnMapping(column="DEV", state="DEV", reverse_sync_priority=1),
    ColumnMapping(column="STAGE", state="STAGE", reverse_sync_priority=1),
    ColumnMapping(column="Blocked", state="Blocked", reverse_sync_priority=1),
    ColumnMapping(column="Ready for Stage", state="DEV", reverse_sync_priority=0),
    ColumnMapping(column="Findings", display_only=True),
]

DEFAULT_TAG_MAPPINGS: Dict[str, str] = {
    "Mobile": "mobile",
    "Web": "web",
    "API": "backend",
    "Frontend": "frontend",
    "Backend": "backend",
    "iOS": "mobile",
    "Android": "mobile",
    "Desktop": "desktop",
    "Database": "backend",
    "UI/UX": "frontend",
    "DevOps": "infrastructure",
    "QA": "testing",
    "Testing": "testing",
    "Security": "security",
    "Performance": "performance",
}

ACTIVE_STATES = ["Backlog", "In Progress", "DEV", "STAGE", "Blocked"]

STATE_ALIASES: Dict[str, str] = {
    "backlog": "Backlog",
    "open": "Backlog",
    "to do": "Backlog",
    "todo": "Backlog",
    "in progress": "In Progress",
    "inprogress": "In Progress",
    "in-progress": "In Progress",
    "dev": "DEV",
    "development": "DEV",
    "in dev": "DEV",
    "stage": "STAGE",
    "staging": "STAGE",
    "in stage": "STAGE",
    "blocked": "Blocked",
    "on hold": "Blocked",
}


def _key(value: Optional[str]) -> str:
    return " ".join((value or "").split()).lower()


class ColumnResolution(str, Enum):
    MAPPED = "mapped"
    DISPLAY_ONLY = "display_only"
    UNMAPPED = "unmapped"


class FieldMapper:
    """Pure lookup tables; safe to share between concurrent passes."""

    def __init__(
        self,
        column_mappings: Optional[Iterable[ColumnMapping]] = None,
        tag_mappings: Optional[Dict[str, str]] = None,
        findings_columns: Optional[Iterable[str]] = None,
        alert_states: Optional[Iterable[str]] = None,
    ):
        self.column_mappings = list(column_mappings) if column_mappings is not None else list(DEFAULT_COLUMN_MAPPINGS)
        self.tag_mappings = dict(tag_mappings) if tag_mappings is not None else dict(DEFAULT_TAG_MAPPINGS)
        self.findings_columns = {_key(c) for c in (findings_columns if findings_columns is not None else ["findings"])}
        self.alert_states = {_key(s) for s in (alert_states or [])}

        self._columns = {_key(m.column): m for m in self.column_mappings}
        self._tags_lower = {_key(tag): subsystem for tag, subsystem in self.tag_mappings.items()}

    @classmethod
    def from_settings(cls, settings) -> "FieldMapper":
        column_mappings = None
        if settings.column_mappings:
            column_mappings = [
                ColumnMapping(column=column, display_only=True)
                if state == DISPLAY_ONLY
                else ColumnMapping(column=column, state=state)
                for column, state in settings.column_mappings.items()
            ]
        return cls(
            column_mappings=column_mappings,
            tag_mappings=settings.tag_mappings,
            findings_columns=settings.findings_columns_list,
            alert_states=settings.alert_states_list,
        )

    # Columns / states

    def resolve_column(self, column: Optional[str]) -> Tuple[ColumnResolution, Optional[str]]:
        mapping = self._columns.get(_key(column))
        if mapping is None:
            return ColumnResolution.UNMAPPED, None
        if mapping.display_only:
            return ColumnResolution.DISPLAY_ONLY, None
        if not mapping.state:
            return ColumnResolution.UNMAPPED, None
        return ColumnResolution.MAPPED, mapping.state

    def map_column_to_state(self, column: Optional[str]) -> Optional[str]:
        resolution, state = self.resolve_column(column)
        return state if resolution == ColumnResolution.MAPPED else None

    def is_display_only(self, column: Optional[str]) -> bool:
        return self.resolve_column(column)[0] == ColumnResolution.DISPLAY_ONLY

    def normalize_state(self, state: Optional[str]) -> Optional[str]:
        if not state:
            return None
        return STATE_ALIASES.get(_key(state), state.strip())

    def map_state_to_column(self, state: Optional[str]) -> Optional[str]:
        """Reverse lookup; the highest reverse_sync_priority wins, then declaration order."""
        normalized = _key(self.normalize_state(state))
        if not normalized:
            return None
        best: Optional[ColumnMapping] = None
        for mapping in self.column_mappings:
            if mapping.display_only or _key(mapping.state) != normalized:
                continue
            if best is None or mapping.reverse_sync_priority > best.reverse_sync_priority:
                best = mapping
        return best.column if best else None

    def states_match(self, left: Optional[str], right: Optional[str]) -> bool:
        return _key(self.normalize_state(left)) == _key(self.normalize_state(right))

    def is_active_state(self, state: Optional[str]) -> bool:
        return _key(self.normalize_state(state)) in {_key(s) for s in ACTIVE_STATES}

    def is_alert_state(self, state: Optional[str]) -> bool:
        return bool(state) and _key(state) in self.alert_states

    def is_findings_column(self, column: Optional[str]) -> bool:
        return _key(column) in self.findings_columns

    # Tags / subsystems

    def map_tag(self, tag: str) -> str:
        """Exact match, then case-insensitive, else the lowercased tag itself."""
        if tag in self.tag_mappings:
            return self.tag_mappings[tag]
        subsystem = self._tags_lower.get(_key(tag))
        if subsystem:
            return subsystem
        return tag.strip().lower()

    def map_tags(self, tags: Iterable[str]) -> Optional[str]:
        """First tag that yields a non-empty subsystem."""
        for tag in tags:
            subsystem = self.map_tag(tag)
            if subsystem:
                return subsystem
        return None

    def tags_for_subsystem(self, subsystem: Optional[str]) -> List[str]:
        if not subsystem:
            return []
        wanted = _key(subsystem)
        tags = [tag for tag, mapped in self.tag_mappings.items() if _key(mapped) == wanted]
        return tags or [subsystem]

    def subsystems_match(self, left: Optional[str], right: Optional[str]) -> bool:
        return _key(left) == _key(right)
