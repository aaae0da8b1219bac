import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from boardsync.connectors.base import BaseConnector
from boardsync.constants.reason_codes import ReasonCode, explain_reason
from boardsync.exceptions import BatchInProgressError, BoardSyncError, PartialCreateError, RemoteError
from boardsync.schemas.audit import AuditAction
from boardsync.schemas.common import Direction, Platform
from boardsync.schemas.reconcile import MissingTicket, ReconciliationResult, TicketPair
from boardsync.schemas.rollback import ChangeKind, RollbackSnapshot, SnapshotChange
from boardsync.schemas.sync import (
    DeleteSource,
    OperationStatus,
    OperationType,
    OutcomeStatus,
    SideResult,
    SyncOperation,
    SyncScope,
    TicketOutcome,
)
from boardsync.schemas.ticket import ExternalTicket, TicketDraft
from boardsync.services.audit_service import AuditService
from boardsync.services.identity import strip_id_prefix, sync_marker
from boardsync.services.locks import LockRegistry
from boardsync.services.mapper import FieldMapper
from boardsync.services.rollback import RollbackManager, ticket_key
from boardsync.storage.base import Storage
from boardsync.utils.markdown import markdown_to_plain
from boardsync.utils.timeutils import utcnow

log = logging.getLogger(__name__)

VERBS = {
    OperationType.CREATE: ("create", "created", "in"),
    OperationType.SYNC: ("sync", "synced", "to"),
    OperationType.DELETE: ("delete", "deleted", "from"),
}


@dataclass
class DeletePlan:
    ticket_id: str
    task_id: Optional[str] = None
    issue_id: Optional[str] = None
    known: Dict[Platform, ExternalTicket] = field(default_factory=dict)

    def side_id(self, platform: Platform) -> Optional[str]:
        return self.task_id if platform == Platform.ASANA else self.issue_id


class BatchContext:
    """Mutable state of one running batch, shared by its per-ticket workers."""

    def __init__(self, scope: SyncScope, operation: SyncOperation, snapshot: RollbackSnapshot, max_concurrency: int):
        self.scope = scope
        self.operation = operation
        self.snapshot = snapshot
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self.abort = asyncio.Event()
        self.abort_reason: Optional[str] = None

    def record(self, change: SnapshotChange) -> None:
        self.snapshot.record(change)

    def remember(self, ticket: ExternalTicket) -> None:
        self.snapshot.tickets.setdefault(
            ticket_key(Platform(ticket.platform), ticket.id), ticket.model_dump(mode="json")
        )


def summarize(operation_type: OperationType, outcomes: List[TicketOutcome], platform_label: str) -> str:
    """Aggregate one-line summary, e.g. 'Deleted 2 of 3 tickets from Asana (1 failed)'."""
    verb, past, preposition = VERBS[operation_type]
    skipped = sum(1 for o in outcomes if o.status == OutcomeStatus.SKIPPED)
    succeeded = sum(1 for o in outcomes if o.status == OutcomeStatus.SUCCESS)
    attempted = len(outcomes) - skipped
    failed = attempted - succeeded
    suffix = f" ({skipped} skipped)" if skipped else ""

    if attempted == 0:
        return f"No tickets to {verb}{suffix}"
    if failed == 0:
        return f"Successfully {past} all {attempted} tickets {preposition} {platform_label}{suffix}"
    if succeeded == 0:
        return f"Failed to {verb} any tickets {preposition} {platform_label}{suffix}"
    details = [f"{failed} failed"]
    if skipped:
        details.append(f"{skipped} skipped")
    return f"{past.capitalize()} {succeeded} of {attempted} tickets {preposition} {platform_label} ({', '.join(details)})"


class SyncService:
    """
    Executes create / sync / delete batches against the two remote systems.

    Tickets within a batch are processed concurrently and independently: one
    ticket failing does not stop the others. Only an authentication or
    permission error aborts the batch, since no remaining ticket can succeed.
    The operation ends `completed` (per-ticket failures are listed in its
    results) unless the batch could not run or was aborted, which is `failed`.
    """

    def __init__(
        self,
        storage: Storage,
        task_connector: BaseConnector,
        issue_connector: BaseConnector,
        mapper: FieldMapper,
        audit: AuditService,
        rollback: RollbackManager,
        locks: LockRegistry,
        max_concurrency: int = 5,
    ):
        self.storage = storage
        self.connectors: Dict[Platform, BaseConnector] = {
            Platform.ASANA: task_connector,
            Platform.YOUTRACK: issue_connector,
        }
        self.mapper = mapper
        self.audit = audit
        self.rollback = rollback
        self.locks = locks
        self.max_concurrency = max_concurrency

    @staticmethod
    def _platforms(direction: Direction) -> Tuple[Platform, Platform]:
        """(source, target) platforms for a direction."""
        if direction == Direction.FORWARD:
            return Platform.ASANA, Platform.YOUTRACK
        return Platform.YOUTRACK, Platform.ASANA

    async def execute(
        self,
        scope: SyncScope,
        operation_type: OperationType,
        ticket_ids: List[str],
        analysis: Optional[ReconciliationResult] = None,
        source: Optional[DeleteSource] = None,
        trigger: str = "manual",
    ) -> SyncOperation:
        if operation_type == OperationType.ROLLBACK:
            raise ValueError("Rollback operations are executed by the rollback manager")
        if operation_type in (OperationType.CREATE, OperationType.SYNC) and analysis is None:
            raise ValueError(f"A reconciliation analysis is required for '{operation_type.value}'")
        direction = analysis.direction if analysis else Direction.FORWARD
        source = source or DeleteSource.ASANA
        ticket_ids = list(dict.fromkeys(ticket_ids))  # de-duplicate, keep order

        lock = self.locks.batch(scope.user_id, scope.task_project_id)
        if lock.locked():
            raise BatchInProgressError(
                f"A batch for project {scope.task_project_id} is already running for user {scope.user_id}"
            )

        async with lock:
            operation = SyncOperation(
                user_id=scope.user_id,
                project_id=scope.task_project_id,
                operation_type=operation_type,
                direction=direction,
                trigger=trigger,
                ticket_ids=ticket_ids,
                status=OperationStatus.PENDING,
                details={"source": source.value} if operation_type == OperationType.DELETE else {},
            )
            touched = self._touched_tickets(operation_type, ticket_ids, analysis)
            async with self.locks.user(scope.user_id):
                operation, snapshot = self.rollback.begin(operation, touched)
            log.info(
                f"Starting {operation_type.value} operation #{operation.id} "
                f"({len(ticket_ids)} tickets, {direction.value}, trigger={trigger})"
            )

            try:
                await self._validate_connections(operation_type, direction, source)
            except RemoteError as e:
                log.error(f"Operation #{operation.id} could not run: {e}")
                operation.status = OperationStatus.FAILED
                operation.error_message = str(e)
                operation.summary = f"Operation could not run: {e}"
                operation.completed_at = utcnow()
                async with self.locks.user(scope.user_id):
                    self.storage.save_operation(operation)
                return operation

            operation.status = OperationStatus.RUNNING
            operation.started_at = utcnow()
            async with self.locks.user(scope.user_id):
                self.storage.save_operation(operation)

            ctx = BatchContext(scope, operation, snapshot, self.max_concurrency)
            try:
                outcomes = await asyncio.gather(*(
                    self._run_ticket(ctx, operation_type, ticket_id, analysis, source) for ticket_id in ticket_ids
                ))
                operation.results = list(outcomes)
                if operation_type == OperationType.DELETE:
                    label = source.label
                else:
                    label = self._platforms(direction)[1].label
                operation.summary = summarize(operation_type, operation.results, label)
                if ctx.abort.is_set():
                    operation.status = OperationStatus.FAILED
                    operation.error_message = f"Batch aborted: {ctx.abort_reason}"
                else:
                    operation.status = OperationStatus.COMPLETED
            finally:
                # Changes already made remotely must stay reachable by a rollback
                if operation.status == OperationStatus.RUNNING:
                    operation.status = OperationStatus.FAILED
                    operation.error_message = "Batch interrupted before all tickets finished"
                    operation.summary = operation.error_message
                    log.error(f"Operation #{operation.id} interrupted with {len(ctx.snapshot.changes)} recorded changes")
                operation.completed_at = utcnow()
                async with self.locks.user(scope.user_id):
                    self.storage.save_snapshot(ctx.snapshot)
                    self.storage.save_operation(operation)

            log.info(f"Operation #{operation.id} {operation.status.value}: {operation.summary}")
            return operation

    def _touched_tickets(
        self, operation_type: OperationType, ticket_ids: List[str], analysis: Optional[ReconciliationResult]
    ) -> List[ExternalTicket]:
        if analysis is None:
            return []
        touched: List[ExternalTicket] = []
        for ticket_id in ticket_ids:
            if operation_type == OperationType.CREATE:
                missing = analysis.find_missing(ticket_id)
                if missing:
                    touched.append(missing.ticket)
            elif operation_type == OperationType.SYNC:
                pair = analysis.find_mismatched(ticket_id)
                if pair:
                    touched.extend([pair.source, pair.target])
            else:
                for ticket in (analysis.find_ticket(ticket_id), analysis.find_counterpart(ticket_id)):
                    if ticket is not None:
                        touched.append(ticket)
        return touched

    async def _validate_connections(
        self, operation_type: OperationType, direction: Direction, source: DeleteSource
    ) -> None:
        if operation_type == OperationType.DELETE:
            platforms = source.platforms
        else:
            platforms = [self._platforms(direction)[1]]
        for platform in platforms:
            await self.connectors[platform].validate_connection()

    async def _run_ticket(
        self,
        ctx: BatchContext,
        operation_type: OperationType,
        ticket_id: str,
        analysis: Optional[ReconciliationResult],
        source: DeleteSource,
    ) -> TicketOutcome:
        async with ctx.semaphore:
            if ctx.abort.is_set():
                return TicketOutcome(
                    ticket_id=ticket_id, status=OutcomeStatus.SKIPPED,
                    message=explain_reason(ReasonCode.BATCH_ABORTED, {"detail": ctx.abort_reason}),
                )
            try:
                if operation_type == OperationType.CREATE:
                    return await self._create_one(ctx, analysis, ticket_id)
                if operation_type == OperationType.SYNC:
                    return await self._sync_one(ctx, analysis, ticket_id)
                return await self._delete_one(ctx, analysis, ticket_id, source)
            except RemoteError as e:
                if e.is_fatal and not ctx.abort.is_set():
                    ctx.abort_reason = str(e)
                    ctx.abort.set()
                    log.error(f"Operation #{ctx.operation.id} aborted on ticket {ticket_id}: {e}")
                else:
                    log.error(f"Ticket {ticket_id} failed in operation #{ctx.operation.id}: {e}")
                return TicketOutcome(ticket_id=ticket_id, status=OutcomeStatus.FAILED, message=e.message, error=str(e))
            except BoardSyncError as e:
                log.error(f"Ticket {ticket_id} failed in operation #{ctx.operation.id}: {e}")
                return TicketOutcome(ticket_id=ticket_id, status=OutcomeStatus.FAILED, message=str(e), error=str(e))
            except Exception as e:
                log.error(f"Unexpected error on ticket {ticket_id} in operation #{ctx.operation.id}: {e}", exc_info=True)
                message = f"{type(e).__name__}: {e}"
                return TicketOutcome(ticket_id=ticket_id, status=OutcomeStatus.FAILED, message=message, error=message)

    # Create

    def build_draft(self, direction: Direction, source: ExternalTicket) -> TicketDraft:
        if direction == Direction.FORWARD:
            description = f"{source.description}\n\n{sync_marker(source.id)}".strip()
            return TicketDraft(
                title=source.title,
                description=description,
                status=self.mapper.map_column_to_state(source.status),
                subsystem=self.mapper.map_tags(source.tags),
            )
        subsystem = getattr(source, "subsystem", None)
        return TicketDraft(
            title=f"{source.id} {strip_id_prefix(source.title)}".strip(),
            description=markdown_to_plain(source.description),
            status=self.mapper.map_state_to_column(source.status),
            tags=self.mapper.tags_for_subsystem(subsystem) if subsystem else [],
        )

    def _existing_mapping(self, scope: SyncScope, direction: Direction, source_id: str):
        if direction == Direction.FORWARD:
            return self.storage.get_mapping_by_task(scope.user_id, source_id)
        return self.storage.get_mapping_by_issue(scope.user_id, source_id)

    async def _create_one(self, ctx: BatchContext, analysis: ReconciliationResult, ticket_id: str) -> TicketOutcome:
        scope = ctx.scope
        direction = analysis.direction
        source_platform, target_platform = self._platforms(direction)
        missing: Optional[MissingTicket] = analysis.find_missing(ticket_id)
        if missing is None:
            return TicketOutcome(
                ticket_id=ticket_id, status=OutcomeStatus.SKIPPED,
                message=explain_reason(ReasonCode.NOT_MISSING, {"ticket_id": ticket_id}),
            )
        source = missing.ticket

        async with self.locks.user(scope.user_id):
            existing = self._existing_mapping(scope, direction, ticket_id)
        existing_counterpart = None
        if existing:
            existing_counterpart = existing.issue_id if direction == Direction.FORWARD else existing.task_id
            if existing_counterpart != missing.stale_counterpart_id:
                return TicketOutcome(
                    ticket_id=ticket_id, title=source.title, status=OutcomeStatus.SKIPPED,
                    counterpart_id=existing_counterpart, message=explain_reason(
                        ReasonCode.ALREADY_LINKED, {"ticket_id": ticket_id, "counterpart_id": existing_counterpart}
                    ),
                )

        draft = self.build_draft(direction, source)
        placement_error: Optional[PartialCreateError] = None
        try:
            created = await self.connectors[target_platform].create_ticket(draft)
        except PartialCreateError as e:
            # The ticket exists remotely; track and map it like any other create
            created, placement_error = e.ticket, e
            if e.is_fatal and not ctx.abort.is_set():
                ctx.abort_reason = str(e.cause)
                ctx.abort.set()
        ctx.record(SnapshotChange(
            kind=ChangeKind.CREATED, platform=target_platform, ticket_id=created.id, source_ticket_id=ticket_id,
            payload=created.model_dump(mode="json"),
        ))
        self.audit.log(
            user_id=scope.user_id, ticket_id=ticket_id, platform=target_platform, action=AuditAction.CREATED,
            actor=scope.actor, operation_id=ctx.operation.id,
            field_name="issue_id" if target_platform == Platform.YOUTRACK else "task_id", new_value=created.id,
        )
        sides = [SideResult(
            platform=target_platform, ticket_id=created.id,
            status=OutcomeStatus.PARTIAL if placement_error else OutcomeStatus.SUCCESS,
            error=str(placement_error) if placement_error else None,
        )]

        task_id, issue_id = (ticket_id, created.id) if direction == Direction.FORWARD else (created.id, ticket_id)
        try:
            async with self.locks.user(scope.user_id):
                if existing_counterpart is not None:
                    # Counterpart of the old mapping no longer exists
                    self.storage.delete_mapping(scope.user_id, existing.task_id)
                    log.info(f"Replaced stale mapping {existing.task_id} -> {existing.issue_id}")
                mapping, _ = self.storage.create_mapping(
                    scope.user_id, scope.task_project_id, task_id, scope.issue_project_id, issue_id
                )
                ctx.record(SnapshotChange(
                    kind=ChangeKind.MAPPING_ADDED, platform=source_platform, ticket_id=ticket_id,
                    source_ticket_id=ticket_id, mapping={"task_id": mapping.task_id, "issue_id": mapping.issue_id},
                ))
                self.audit.log(
                    user_id=scope.user_id, ticket_id=ticket_id, platform=source_platform,
                    action=AuditAction.MAPPING_ADDED, actor=scope.actor, operation_id=ctx.operation.id,
                    field_name="mapping", new_value=f"{mapping.task_id} -> {mapping.issue_id}",
                )
        except BoardSyncError as e:
            log.error(f"Created {created.id} for {ticket_id} but could not store the mapping: {e}")
            return TicketOutcome(
                ticket_id=ticket_id, title=source.title, status=OutcomeStatus.PARTIAL, counterpart_id=created.id,
                sides=sides, message=explain_reason(
                    ReasonCode.MAPPING_NOT_SAVED, {"ticket_id": ticket_id, "counterpart_id": created.id}
                ), error="; ".join(str(err) for err in (placement_error, e) if err),
            )

        if placement_error:
            return TicketOutcome(
                ticket_id=ticket_id, title=source.title, status=OutcomeStatus.PARTIAL, counterpart_id=created.id,
                sides=sides, message=explain_reason(ReasonCode.NOT_PLACED, {
                    "ticket_id": ticket_id, "counterpart_id": created.id, "detail": placement_error.cause.message,
                }), error=str(placement_error),
            )
        return TicketOutcome(
            ticket_id=ticket_id, title=source.title, status=OutcomeStatus.SUCCESS, counterpart_id=created.id,
            message=f"Created {target_platform.label} ticket {created.id}", sides=sides,
        )

    # Sync

    def _field_changes(self, direction: Direction, pair: TicketPair) -> List[Tuple[str, object, object]]:
        """(field, old target value, new value) for every mismatched field."""
        source, target = pair.source, pair.target
        changes = []
        for mismatch in pair.mismatches:
            if mismatch.field == "status":
                changes.append(("status", target.status, mismatch.source_value))
            elif mismatch.field == "subsystem":
                if direction == Direction.FORWARD:
                    changes.append(("subsystem", getattr(target, "subsystem", None), mismatch.source_value))
                else:
                    changes.append(("tags", list(target.tags), self.mapper.tags_for_subsystem(mismatch.source_value)))
            elif mismatch.field == "title":
                title = source.title if direction == Direction.FORWARD else f"{source.id} {strip_id_prefix(source.title)}"
                changes.append(("title", target.title, title))
            elif mismatch.field == "description":
                if direction == Direction.FORWARD:
                    description = f"{source.description}\n\n{sync_marker(source.id)}".strip()
                else:
                    description = markdown_to_plain(source.description)
                changes.append(("description", target.description, description))
        return changes

    async def _sync_one(self, ctx: BatchContext, analysis: ReconciliationResult, ticket_id: str) -> TicketOutcome:
        scope = ctx.scope
        direction = analysis.direction
        target_platform = self._platforms(direction)[1]
        pair = analysis.find_mismatched(ticket_id)
        if pair is None:
            return TicketOutcome(
                ticket_id=ticket_id, status=OutcomeStatus.SKIPPED,
                message=explain_reason(ReasonCode.NOT_MISMATCHED, {"ticket_id": ticket_id}),
            )

        changes = self._field_changes(direction, pair)
        await self.connectors[target_platform].update_ticket(
            pair.target.id, {field_name: new for field_name, _, new in changes}
        )
        for field_name, old, new in changes:
            ctx.record(SnapshotChange(
                kind=ChangeKind.FIELD_UPDATED, platform=target_platform, ticket_id=pair.target.id,
                source_ticket_id=ticket_id, field_name=field_name, old_value=old, new_value=new,
            ))
            self.audit.log_field_change(
                user_id=scope.user_id, ticket_id=pair.target.id, platform=target_platform, actor=scope.actor,
                field_name=field_name, old_value=old, new_value=new, operation_id=ctx.operation.id,
            )
        fields = ", ".join(name for name, _, _ in changes)
        return TicketOutcome(
            ticket_id=ticket_id, title=pair.source.title, status=OutcomeStatus.SUCCESS,
            counterpart_id=pair.target.id, message=f"Updated {fields} on {pair.target.id}",
            sides=[SideResult(platform=target_platform, ticket_id=pair.target.id, status=OutcomeStatus.SUCCESS)],
        )

    # Delete

    def _plan_delete(
        self, scope: SyncScope, ticket_id: str, analysis: Optional[ReconciliationResult], source: DeleteSource
    ) -> DeletePlan:
        plan = DeletePlan(ticket_id=ticket_id)
        mapping = self.storage.get_mapping_by_task(scope.user_id, ticket_id) or \
            self.storage.get_mapping_by_issue(scope.user_id, ticket_id)
        if mapping:
            plan.task_id, plan.issue_id = mapping.task_id, mapping.issue_id

        if analysis is not None:
            for ticket in (analysis.find_ticket(ticket_id), analysis.find_counterpart(ticket_id)):
                if ticket is None:
                    continue
                platform = Platform(ticket.platform)
                plan.known[platform] = ticket
                if platform == Platform.ASANA and plan.task_id is None:
                    plan.task_id = ticket.id
                if platform == Platform.YOUTRACK and plan.issue_id is None:
                    plan.issue_id = ticket.id

        if plan.task_id is None and plan.issue_id is None:
            if source == DeleteSource.YOUTRACK:
                plan.issue_id = ticket_id
            else:
                plan.task_id = ticket_id
        return plan

    async def _delete_side(self, ctx: BatchContext, plan: DeletePlan, platform: Platform) -> SideResult:
        side_id = plan.side_id(platform)
        if side_id is None:
            return SideResult(platform=platform, status=OutcomeStatus.SKIPPED, error=explain_reason(
                ReasonCode.NO_COUNTERPART, {"platform": platform.label, "ticket_id": plan.ticket_id}
            ))
        connector = self.connectors[platform]
        try:
            ticket = plan.known.get(platform) or await connector.get_ticket(side_id)
            ctx.remember(ticket)
            await connector.delete_ticket(side_id)
        except RemoteError as e:
            if e.is_fatal:
                raise
            return SideResult(platform=platform, ticket_id=side_id, status=OutcomeStatus.FAILED, error=str(e))

        ctx.record(SnapshotChange(
            kind=ChangeKind.DELETED, platform=platform, ticket_id=side_id, source_ticket_id=plan.ticket_id,
            payload=ticket.model_dump(mode="json"),
        ))
        self.audit.log(
            user_id=ctx.scope.user_id, ticket_id=side_id, platform=platform, action=AuditAction.DELETED,
            actor=ctx.scope.actor, operation_id=ctx.operation.id, field_name="ticket", old_value=side_id,
        )
        return SideResult(platform=platform, ticket_id=side_id, status=OutcomeStatus.SUCCESS)

    async def _delete_one(
        self, ctx: BatchContext, analysis: Optional[ReconciliationResult], ticket_id: str, source: DeleteSource
    ) -> TicketOutcome:
        scope = ctx.scope
        async with self.locks.user(scope.user_id):
            plan = self._plan_delete(scope, ticket_id, analysis, source)

        sides: List[SideResult] = []
        for platform in source.platforms:
            sides.append(await self._delete_side(ctx, plan, platform))

        deleted = [s for s in sides if s.status == OutcomeStatus.SUCCESS]
        if deleted and plan.task_id:
            async with self.locks.user(scope.user_id):
                removed = self.storage.delete_mapping(scope.user_id, plan.task_id)
                if removed:
                    ctx.record(SnapshotChange(
                        kind=ChangeKind.MAPPING_REMOVED, platform=Platform.ASANA, ticket_id=removed.task_id,
                        source_ticket_id=ticket_id, mapping={"task_id": removed.task_id, "issue_id": removed.issue_id},
                    ))
                    self.audit.log(
                        user_id=scope.user_id, ticket_id=ticket_id, platform=Platform.ASANA,
                        action=AuditAction.DELETED, actor=scope.actor, operation_id=ctx.operation.id,
                        field_name="mapping", old_value=f"{removed.task_id} -> {removed.issue_id}",
                    )

        attempted = [s for s in sides if s.status != OutcomeStatus.SKIPPED]
        failed = [s for s in attempted if s.status == OutcomeStatus.FAILED]
        if not attempted:
            status = OutcomeStatus.FAILED
            labels = " and ".join(s.platform.label for s in sides)
            message = explain_reason(ReasonCode.NOTHING_TO_DELETE, {"ticket_id": ticket_id, "platform": labels})
        elif not failed:
            status = OutcomeStatus.SUCCESS
            message = "Deleted from " + " and ".join(s.platform.label for s in deleted)
        elif not deleted:
            status, message = OutcomeStatus.FAILED, "Delete failed on every requested side"
        else:
            status = OutcomeStatus.PARTIAL
            message = (
                "Deleted from " + " and ".join(s.platform.label for s in deleted)
                + ", failed on " + " and ".join(s.platform.label for s in failed)
            )
        known = plan.known.get(Platform.ASANA) or plan.known.get(Platform.YOUTRACK)
        return TicketOutcome(
            ticket_id=ticket_id, title=known.title if known else "", status=status, message=message, sides=sides,
            counterpart_id=plan.issue_id if ticket_id == plan.task_id else plan.task_id,
            error="; ".join(s.error for s in (failed if attempted else sides) if s.error) or None,
        )
