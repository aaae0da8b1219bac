"""Snapshots taken before each batch and the inverse replay that undoes it."""

import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from boardsync.connectors.base import BaseConnector
from boardsync.exceptions import (
    BatchInProgressError,
    BoardSyncError,
    NotFoundError,
    PartialCreateError,
    RollbackError,
)
from boardsync.schemas.audit import AuditAction
from boardsync.schemas.common import Platform
from boardsync.schemas.rollback import ChangeKind, RollbackSnapshot, SnapshotChange
from boardsync.schemas.sync import (
    OperationStatus,
    OperationType,
    OutcomeStatus,
    SideResult,
    SyncOperation,
    SyncScope,
    TicketOutcome,
)
from boardsync.schemas.ticket import ExternalTicket, draft_from_payload
from boardsync.services.audit_service import AuditService
from boardsync.services.locks import LockRegistry
from boardsync.services.snapshot_cleanup import cleanup_expired_snapshots
from boardsync.storage.base import Storage
from boardsync.utils.timeutils import utcnow

log = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def ticket_key(platform: Platform, ticket_id: str) -> str:
    return f"{platform.value}:{ticket_id}"


class RollbackManager:
    """
    Creates the snapshot for an operation and replays the inverse of its
    recorded changes on request.

    Inverse replay uses the values captured in the snapshot, never the current
    remote state. Phases run in this order:
      1. delete tickets the operation created and drop the mappings it added
      2. restore changed fields, newest change first
      3. recreate tickets the operation deleted (they receive new ids)
      4. restore removed mappings, translated to the recreated ids
    """

    def __init__(
        self,
        storage: Storage,
        connectors: Dict[Platform, BaseConnector],
        audit: AuditService,
        locks: LockRegistry,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        self.storage = storage
        self.connectors = connectors
        self.audit = audit
        self.locks = locks
        self.retention_days = retention_days

    def create_snapshot(self, operation: SyncOperation, touched_tickets: Iterable[ExternalTicket]) -> RollbackSnapshot:
        """Capture pre-operation values. Persisted immediately when the operation already exists."""
        snapshot = RollbackSnapshot(
            operation_id=operation.id,
            user_id=operation.user_id,
            tickets={
                ticket_key(Platform(t.platform), t.id): t.model_dump(mode="json") for t in touched_tickets
            },
            created_at=utcnow(),
            expires_at=utcnow() + timedelta(days=self.retention_days),
        )
        if operation.id is not None:
            self.storage.save_snapshot(snapshot)
        return snapshot

    def begin(
        self, operation: SyncOperation, touched_tickets: Iterable[ExternalTicket]
    ) -> Tuple[SyncOperation, RollbackSnapshot]:
        """Persist a pending operation together with its snapshot in one write."""
        snapshot = self.create_snapshot(operation, touched_tickets)
        stored_operation, stored_snapshot = self.storage.create_operation(operation, snapshot)
        return stored_operation, stored_snapshot

    def purge_expired(self) -> int:
        return cleanup_expired_snapshots(self.storage)

    def _validate(self, scope: SyncScope, operation_id: int) -> Tuple[SyncOperation, RollbackSnapshot]:
        original = self.storage.get_operation(operation_id)
        if original is None:
            raise RollbackError(RollbackError.NOT_FOUND, f"operation {operation_id} not found")
        if original.user_id != scope.user_id:
            raise RollbackError(RollbackError.FORBIDDEN, f"operation {operation_id} belongs to another user")
        if original.operation_type == OperationType.ROLLBACK:
            raise RollbackError(RollbackError.NOT_ROLLBACKABLE, "rollback operations cannot be rolled back")
        if original.status not in (OperationStatus.COMPLETED, OperationStatus.FAILED):
            raise RollbackError(
                RollbackError.NOT_ROLLBACKABLE,
                f"operation {operation_id} is {original.status.value}",
            )

        snapshot = self.storage.get_snapshot(operation_id)
        if snapshot is None:
            raise RollbackError(RollbackError.SNAPSHOT_MISSING, f"no snapshot exists for operation {operation_id}")
        if snapshot.is_expired(utcnow()):
            self.storage.delete_snapshot(operation_id)
            raise RollbackError(
                RollbackError.SNAPSHOT_EXPIRED,
                f"snapshot for operation {operation_id} expired on {snapshot.expires_at.isoformat()}",
            )
        if not snapshot.changes:
            raise RollbackError(RollbackError.NOT_ROLLBACKABLE, f"operation {operation_id} recorded no changes")
        return original, snapshot

    async def rollback(self, scope: SyncScope, operation_id: int) -> SyncOperation:
        """Undo an operation. Returns the rollback operation that holds the step results."""
        original, snapshot = self._validate(scope, operation_id)

        lock = self.locks.batch(scope.user_id, original.project_id)
        if lock.locked():
            raise BatchInProgressError(f"A batch for project {original.project_id} is still running")

        async with lock:
            touched = sorted({c.source_ticket_id or c.ticket_id for c in snapshot.changes})
            async with self.locks.user(scope.user_id):
                rollback_op, _ = self.storage.create_operation(SyncOperation(
                    user_id=scope.user_id,
                    project_id=original.project_id,
                    operation_type=OperationType.ROLLBACK,
                    direction=original.direction,
                    trigger=scope.actor,
                    ticket_ids=touched,
                    status=OperationStatus.RUNNING,
                    started_at=utcnow(),
                    details={"rolled_back_operation_id": operation_id},
                ))
            log.info(f"Rolling back operation #{operation_id} ({len(snapshot.changes)} changes) as #{rollback_op.id}")

            steps = await self._replay(scope, rollback_op, snapshot)
            failed = [change for change, side in steps if side.status == OutcomeStatus.FAILED]

            rollback_op.results = self._outcomes(steps)
            rollback_op.status = OperationStatus.COMPLETED
            rollback_op.completed_at = utcnow()
            async with self.locks.user(scope.user_id):
                if failed:
                    snapshot.changes = failed
                    self.storage.save_snapshot(snapshot)
                    # The trimmed snapshot now holds only the steps of this rollback that failed
                    original.details = {
                        **original.details,
                        "partial_rollback_by": rollback_op.id,
                        "pending_rollback_changes": len(failed),
                    }
                    self.storage.save_operation(original)
                    rollback_op.details = {**rollback_op.details, "pending_changes": len(failed)}
                    rollback_op.error_message = f"{len(failed)} of {len(steps)} rollback steps failed"
                    rollback_op.summary = (
                        f"Rolled back {len(steps) - len(failed)} of {len(steps)} changes of operation "
                        f"#{operation_id} ({len(failed)} failed)"
                    )
                    log.warning(f"Rollback of #{operation_id} incomplete: {rollback_op.error_message}")
                else:
                    original.status = OperationStatus.ROLLED_BACK
                    original.details = {**original.details, "rolled_back_by": rollback_op.id}
                    self.storage.save_operation(original)
                    self.storage.delete_snapshot(operation_id)
                    rollback_op.summary = f"Successfully rolled back all {len(steps)} changes of operation #{operation_id}"
                    log.info(rollback_op.summary)
                self.storage.save_operation(rollback_op)
            return rollback_op

    async def _replay(
        self, scope: SyncScope, rollback_op: SyncOperation, snapshot: RollbackSnapshot
    ) -> List[Tuple[SnapshotChange, SideResult]]:
        changes = list(reversed(snapshot.changes))
        phase_one = [c for c in changes if c.kind in (ChangeKind.MAPPING_ADDED, ChangeKind.CREATED)]
        phase_two = [c for c in changes if c.kind == ChangeKind.FIELD_UPDATED]
        phase_three = [c for c in changes if c.kind == ChangeKind.DELETED]
        phase_four = [c for c in changes if c.kind == ChangeKind.MAPPING_REMOVED]

        recreated: Dict[str, str] = {}
        steps: List[Tuple[SnapshotChange, SideResult]] = []
        for change in phase_one + phase_two + phase_three + phase_four:
            try:
                warning = await self._invert(scope, rollback_op, change, recreated)
                steps.append((change, SideResult(
                    platform=change.platform, ticket_id=change.ticket_id, status=OutcomeStatus.SUCCESS, error=warning,
                )))
            except Exception as e:
                log.error(
                    f"Rollback step {change.kind.value} for {change.platform.value}:{change.ticket_id} failed: {e}",
                    exc_info=not isinstance(e, BoardSyncError),
                )
                steps.append((change, SideResult(
                    platform=change.platform, ticket_id=change.ticket_id, status=OutcomeStatus.FAILED, error=str(e)
                )))
        return steps

    async def _invert(
        self, scope: SyncScope, rollback_op: SyncOperation, change: SnapshotChange, recreated: Dict[str, str]
    ) -> Optional[str]:
        """Apply the inverse of one change. Returns a warning when it only partly applied."""
        connector = self.connectors[change.platform]
        audit_kwargs = dict(
            user_id=scope.user_id, ticket_id=change.ticket_id, platform=change.platform,
            action=AuditAction.ROLLED_BACK, actor=scope.actor, operation_id=rollback_op.id,
        )

        if change.kind == ChangeKind.CREATED:
            try:
                await connector.delete_ticket(change.ticket_id)
            except NotFoundError:
                log.info(f"{change.platform.label} ticket {change.ticket_id} already gone; nothing to delete")
            self.audit.log(**audit_kwargs, field_name="ticket", old_value=change.ticket_id, new_value=None)

        elif change.kind == ChangeKind.MAPPING_ADDED:
            async with self.locks.user(scope.user_id):
                self.storage.delete_mapping(scope.user_id, change.mapping["task_id"])
                self.audit.log(**audit_kwargs, field_name="mapping", old_value=self._mapping_label(change.mapping))

        elif change.kind == ChangeKind.FIELD_UPDATED:
            await connector.update_ticket(change.ticket_id, {change.field_name: change.old_value})
            self.audit.log(
                **audit_kwargs, field_name=change.field_name, old_value=change.new_value, new_value=change.old_value
            )

        elif change.kind == ChangeKind.DELETED:
            warning = None
            try:
                ticket = await connector.create_ticket(draft_from_payload(change.payload or {}))
            except PartialCreateError as e:
                # Recreated but not placed; retrying the step would create a duplicate
                ticket, warning = e.ticket, str(e)
            recreated[ticket_key(change.platform, change.ticket_id)] = ticket.id
            self.audit.log(**audit_kwargs, field_name="ticket", old_value=None, new_value=ticket.id)
            return warning

        elif change.kind == ChangeKind.MAPPING_REMOVED:
            task_id = recreated.get(ticket_key(Platform.ASANA, change.mapping["task_id"]), change.mapping["task_id"])
            issue_id = recreated.get(
                ticket_key(Platform.YOUTRACK, change.mapping["issue_id"]), change.mapping["issue_id"]
            )
            async with self.locks.user(scope.user_id):
                self.storage.create_mapping(
                    scope.user_id, scope.task_project_id, task_id, scope.issue_project_id, issue_id
                )
                self.audit.log(
                    **audit_kwargs, field_name="mapping",
                    new_value=self._mapping_label({"task_id": task_id, "issue_id": issue_id}),
                )

    @staticmethod
    def _mapping_label(mapping: Optional[Dict[str, str]]) -> Optional[str]:
        if not mapping:
            return None
        return f"{mapping['task_id']} -> {mapping['issue_id']}"

    @staticmethod
    def _outcomes(steps: List[Tuple[SnapshotChange, SideResult]]) -> List[TicketOutcome]:
        grouped: Dict[str, List[SideResult]] = {}
        for change, side in steps:
            grouped.setdefault(change.source_ticket_id or change.ticket_id, []).append(side)
        outcomes = []
        for ticket_id in sorted(grouped):
            sides = grouped[ticket_id]
            failed = [s for s in sides if s.status == OutcomeStatus.FAILED]
            if not failed:
                status, message = OutcomeStatus.SUCCESS, f"Restored {len(sides)} change(s)"
            elif len(failed) == len(sides):
                status, message = OutcomeStatus.FAILED, "Nothing could be restored"
            else:
                status, message = OutcomeStatus.PARTIAL, f"Restored {len(sides) - len(failed)} of {len(sides)} changes"
            outcomes.append(TicketOutcome(
                ticket_id=ticket_id, status=status, message=message, sides=sides,
                error="; ".join(s.error for s in failed if s.error) or None,
            ))
        return outcomes
