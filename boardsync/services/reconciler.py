import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set

from boardsync.schemas.common import Direction
from boardsync.schemas.mapping import TicketMapping
from boardsync.schemas.reconcile import (
    DisplayOnlyTicket,
    FieldMismatch,
    FindingsAlert,
    MissingTicket,
    ReconciliationResult,
    Resolution,
    ResolutionKind,
    TicketPair,
)
from boardsync.schemas.ticket import ExternalTicket, IssueItem, TaskItem
from boardsync.services.identity import IdentityResolver, strip_id_prefix, strip_marker
from boardsync.services.mapper import ColumnResolution, FieldMapper

log = logging.getLogger(__name__)

FINDINGS_ALERT_TEMPLATE = "HIGH ALERT: '{name}' is in Findings (Asana) but still active in YouTrack ({status})"
ALERT_STATE_TEMPLATE = "'{name}' is in {status} (YouTrack) and needs triage before any automated action"


def sanitize_for_comparison(text: Optional[str]) -> str:
    """Trim, normalize line endings, collapse blank lines and case-fold."""
    value = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip() for line in value.split("\n")]
    value = re.sub(r"\n{2,}", "\n", "\n".join(lines))
    return value.strip().casefold()


class ReconciliationService:
    """
    Classifies both ticket sets into matched / mismatched / missing / orphaned /
    findings / display-only / ignored buckets.

    In forward mode the board tasks are the source and tracker issues the target.
    In reverse mode the roles swap, so tracker issues without a task land in
    `missing` and become create candidates for the board.
    """

    def __init__(self, mapper: Optional[FieldMapper] = None):
        self.mapper = mapper or FieldMapper()

    def analyze(
        self,
        sources: Sequence[ExternalTicket],
        targets: Sequence[ExternalTicket],
        mappings: Sequence[TicketMapping],
        ignore_set: Iterable[str] = (),
        direction: Direction = Direction.FORWARD,
        column_filter: Optional[Iterable[str]] = None,
        creator_filter: Optional[str] = None,
        mapper: Optional[FieldMapper] = None,
    ) -> ReconciliationResult:
        mapper = mapper or self.mapper
        ignored_ids: Set[str] = set(ignore_set)
        wanted_columns = {c.strip().lower() for c in column_filter} if column_filter else None

        sources = sorted(sources, key=lambda t: t.id)
        targets_by_id: Dict[str, ExternalTicket] = {t.id: t for t in targets}
        resolver = IdentityResolver(mappings, targets, direction)
        resolutions: Dict[str, Resolution] = {s.id: resolver.resolve(s) for s in sources}
        self._demote_contested_claims(resolutions)

        result = ReconciliationResult(direction=direction)
        accounted: Set[str] = set()  # target ids consumed by a source or suppressed

        for source in sources:
            resolution = resolutions[source.id]
            counterpart = targets_by_id.get(resolution.counterpart_id) if resolution.matched else None

            if source.id in ignored_ids or (counterpart and counterpart.id in ignored_ids):
                result.ignored.append(source)
                if counterpart:
                    result.ignored.append(counterpart)
                    accounted.add(counterpart.id)
                continue

            if not self._passes_filters(source, direction, wanted_columns, creator_filter):
                result.filtered_out += 1
                if counterpart:
                    accounted.add(counterpart.id)
                continue

            if counterpart:
                accounted.add(counterpart.id)
            self._classify_source(result, mapper, direction, source, counterpart, resolution)

        for target in sorted(targets, key=lambda t: t.id):
            if target.id in accounted:
                continue
            if target.id in ignored_ids:
                result.ignored.append(target)
                continue
            alert = self._unpaired_alert(mapper, target)
            if alert:
                result.findings_alerts.append(alert)
            else:
                result.orphaned.append(target)

        self._sort(result)
        log.debug(f"Reconciliation ({direction.value}): {result.counts}")
        return result

    def _demote_contested_claims(self, resolutions: Dict[str, Resolution]) -> None:
        """Two sources heuristically claiming one target are both ambiguous."""
        claims: Dict[str, List[str]] = {}
        for source_id, resolution in resolutions.items():
            if resolution.matched and resolution.heuristic:
                claims.setdefault(resolution.counterpart_id, []).append(source_id)
        for target_id, source_ids in claims.items():
            if len(source_ids) < 2:
                continue
            log.info(f"Ambiguous match: {sorted(source_ids)} all resolve to {target_id}")
            for source_id in source_ids:
                resolutions[source_id] = Resolution(kind=ResolutionKind.AMBIGUOUS, candidates=[target_id])

    def _passes_filters(
        self,
        source: ExternalTicket,
        direction: Direction,
        wanted_columns: Optional[Set[str]],
        creator_filter: Optional[str],
    ) -> bool:
        if wanted_columns is not None and direction == Direction.FORWARD:
            if (source.status or "").strip().lower() not in wanted_columns:
                return False
        if creator_filter and (source.creator or "").lower() != creator_filter.lower():
            return False
        return True

    def _classify_source(
        self,
        result: ReconciliationResult,
        mapper: FieldMapper,
        direction: Direction,
        source: ExternalTicket,
        counterpart: Optional[ExternalTicket],
        resolution: Resolution,
    ) -> None:
        if counterpart:
            task, issue = (source, counterpart) if direction == Direction.FORWARD else (counterpart, source)
            alert = self._pair_alert(mapper, task, issue)
            if alert:
                result.findings_alerts.append(FindingsAlert(source=source, target=counterpart, message=alert))
                return

        reason = self._not_syncable_reason(mapper, direction, source)
        if reason:
            result.display_only.append(DisplayOnlyTicket(ticket=source, counterpart=counterpart, reason=reason))
            return

        if counterpart is None:
            result.missing.append(MissingTicket(
                ticket=source,
                stale_counterpart_id=resolution.candidates[0] if resolution.kind == ResolutionKind.STALE else None,
                ambiguous_candidates=resolution.candidates if resolution.kind == ResolutionKind.AMBIGUOUS else [],
            ))
            return

        pair = TicketPair(
            source=source,
            target=counterpart,
            resolution=resolution.kind,
            mismatches=self.compare(mapper, direction, source, counterpart),
        )
        if pair.mismatches:
            result.mismatched.append(pair)
        else:
            result.matched.append(pair)

    def _not_syncable_reason(self, mapper: FieldMapper, direction: Direction, source: ExternalTicket) -> Optional[str]:
        if direction == Direction.FORWARD:
            resolution, _ = mapper.resolve_column(source.status)
            if resolution == ColumnResolution.DISPLAY_ONLY:
                return "display_only"
            if resolution == ColumnResolution.UNMAPPED:
                return "unmapped"
            return None
        column = mapper.map_state_to_column(source.status)
        return None if column else "unmapped"

    def _pair_alert(self, mapper: FieldMapper, task: ExternalTicket, issue: ExternalTicket) -> Optional[str]:
        if mapper.is_alert_state(issue.status):
            return ALERT_STATE_TEMPLATE.format(name=issue.title, status=issue.status)
        if mapper.is_findings_column(task.status) and mapper.is_active_state(issue.status):
            return FINDINGS_ALERT_TEMPLATE.format(name=task.title, status=issue.status)
        return None

    def _unpaired_alert(self, mapper: FieldMapper, target: ExternalTicket) -> Optional[FindingsAlert]:
        if isinstance(target, IssueItem) and mapper.is_alert_state(target.status):
            return FindingsAlert(
                target=target, message=ALERT_STATE_TEMPLATE.format(name=target.title, status=target.status)
            )
        return None

    def compare(
        self, mapper: FieldMapper, direction: Direction, source: ExternalTicket, target: ExternalTicket
    ) -> List[FieldMismatch]:
        """Field differences, ordered status, subsystem, title, description."""
        task, issue = (source, target) if direction == Direction.FORWARD else (target, source)
        mismatches: List[FieldMismatch] = []

        if direction == Direction.FORWARD:
            expected_state = mapper.map_column_to_state(task.status)
            if expected_state and not mapper.states_match(expected_state, issue.status):
                mismatches.append(FieldMismatch(field="status", source_value=expected_state, target_value=issue.status))
        else:
            expected_column = mapper.map_state_to_column(issue.status)
            if expected_column and (task.status or "").strip().lower() != expected_column.lower():
                mismatches.append(FieldMismatch(field="status", source_value=expected_column, target_value=task.status))

        task_subsystem = mapper.map_tags(task.tags) if isinstance(task, TaskItem) else None
        issue_subsystem = issue.subsystem if isinstance(issue, IssueItem) else None
        if direction == Direction.FORWARD:
            if task_subsystem and not mapper.subsystems_match(task_subsystem, issue_subsystem):
                mismatches.append(FieldMismatch(
                    field="subsystem", source_value=task_subsystem, target_value=issue_subsystem
                ))
        elif issue_subsystem and not mapper.subsystems_match(task_subsystem, issue_subsystem):
            mismatches.append(FieldMismatch(
                field="subsystem", source_value=issue_subsystem, target_value=task_subsystem
            ))

        if sanitize_for_comparison(strip_id_prefix(source.title)) != sanitize_for_comparison(strip_id_prefix(target.title)):
            mismatches.append(FieldMismatch(field="title", source_value=source.title, target_value=target.title))

        if sanitize_for_comparison(strip_marker(source.description)) != sanitize_for_comparison(strip_marker(target.description)):
            mismatches.append(FieldMismatch(
                field="description", source_value=source.description, target_value=target.description
            ))
        return mismatches

    def _sort(self, result: ReconciliationResult) -> None:
        result.matched.sort(key=lambda p: p.ticket_id)
        result.mismatched.sort(key=lambda p: p.ticket_id)
        result.missing.sort(key=lambda m: m.ticket_id)
        result.orphaned.sort(key=lambda t: t.id)
        result.findings_alerts.sort(key=lambda a: a.ticket_id)
        result.display_only.sort(key=lambda d: d.ticket_id)
        result.ignored.sort(key=lambda t: (t.platform, t.id))
