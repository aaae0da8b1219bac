"""Entry point used by the HTTP layer and the schedulers."""

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from boardsync.connectors.base import BaseConnector
from boardsync.exceptions import ConfigurationError
from boardsync.schemas.audit import AuditAction, AuditLogEntry, AuditLogFilter
from boardsync.schemas.common import Direction, Platform
from boardsync.schemas.ignore import IgnoredTicket, IgnoreType
from boardsync.schemas.mapping import TicketMapping
from boardsync.schemas.reconcile import ReconciliationResult
from boardsync.schemas.schedule import SchedulerKind, SchedulerStatus
from boardsync.schemas.sync import DeleteSource, OperationType, SyncOperation, SyncScope
from boardsync.schemas.ticket import ExternalTicket
from boardsync.services.audit_service import AuditService
from boardsync.services.ignore_registry import IgnoreRegistry
from boardsync.services.locks import LockRegistry
from boardsync.services.mapper import FieldMapper
from boardsync.services.reconciler import ReconciliationService
from boardsync.services.rollback import DEFAULT_RETENTION_DAYS, RollbackManager
from boardsync.services.sync_service import SyncService
from boardsync.storage.base import Storage

if TYPE_CHECKING:
    from boardsync.scheduler import SchedulerManager

log = logging.getLogger(__name__)


class BoardSyncService:
    """
    Wires the reconciliation core to one storage backend and one pair of connectors.

    Constructed once at startup and shared by every request and scheduler tick.
    """

    def __init__(
        self,
        storage: Storage,
        task_connector: BaseConnector,
        issue_connector: BaseConnector,
        mapper: Optional[FieldMapper] = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        max_concurrency: int = 5,
    ):
        self.storage = storage
        self.task_connector = task_connector
        self.issue_connector = issue_connector
        self.mapper = mapper or FieldMapper()
        self.locks = LockRegistry()
        self.audit = AuditService(storage)
        self.ignores = IgnoreRegistry(storage, self.audit, self.locks)
        self.reconciler = ReconciliationService(self.mapper)
        self.rollback_manager = RollbackManager(
            storage,
            {Platform.ASANA: task_connector, Platform.YOUTRACK: issue_connector},
            self.audit,
            self.locks,
            retention_days=retention_days,
        )
        self.executor = SyncService(
            storage,
            task_connector,
            issue_connector,
            self.mapper,
            self.audit,
            self.rollback_manager,
            self.locks,
            max_concurrency=max_concurrency,
        )
        self.scheduler: Optional["SchedulerManager"] = None

    def _require_configured(self) -> None:
        missing = [c.platform.label for c in (self.task_connector, self.issue_connector) if not c.configured]
        if missing:
            raise ConfigurationError(f"Missing credentials or project id for: {', '.join(missing)}")

    # Analysis

    async def fetch(self, direction: Direction = Direction.FORWARD) -> Tuple[List[ExternalTicket], List[ExternalTicket]]:
        """(sources, targets) for a direction, fetched concurrently."""
        self._require_configured()
        tasks, issues = await asyncio.gather(
            self.task_connector.fetch_tickets(),
            self.issue_connector.fetch_tickets(),
        )
        log.debug(f"Fetched {len(tasks)} tasks and {len(issues)} issues")
        if direction == Direction.FORWARD:
            return tasks, issues
        return issues, tasks

    async def analyze(
        self,
        scope: SyncScope,
        column_filter: Optional[Iterable[str]] = None,
        direction: Direction = Direction.FORWARD,
        creator_filter: Optional[str] = None,
    ) -> ReconciliationResult:
        sources, targets = await self.fetch(direction)
        async with self.locks.user(scope.user_id):
            mappings = self.storage.list_mappings(scope.user_id, scope.task_project_id)
            ignored = self.ignores.ignored_ids(scope)
        result = self.reconciler.analyze(
            sources,
            targets,
            mappings,
            ignore_set=ignored,
            direction=direction,
            column_filter=column_filter,
            creator_filter=creator_filter,
        )
        log.info(f"Analysis for user {scope.user_id} ({direction.value}): {result.counts}")
        return result

    # Execution

    async def execute(
        self,
        scope: SyncScope,
        operation_type: OperationType,
        ticket_ids: List[str],
        source: Optional[DeleteSource] = None,
        direction: Direction = Direction.FORWARD,
        analysis: Optional[ReconciliationResult] = None,
        trigger: str = "manual",
    ) -> SyncOperation:
        """Run a batch. Create and sync re-analyze first so they act on current remote state."""
        if analysis is None:
            if operation_type == OperationType.DELETE:
                analysis = await self._analysis_for_delete(scope, direction)
            else:
                analysis = await self.analyze(scope, direction=direction)
        return await self.executor.execute(
            scope, operation_type, ticket_ids, analysis=analysis, source=source, trigger=trigger
        )

    async def _analysis_for_delete(self, scope: SyncScope, direction: Direction) -> Optional[ReconciliationResult]:
        # Delete only needs ticket lookups; it still runs when analysis is unavailable
        if not (self.task_connector.configured and self.issue_connector.configured):
            return None
        return await self.analyze(scope, direction=direction)

    async def auto_sync_tick(self, scope: SyncScope) -> str:
        """One auto-sync pass: push every mismatched pair."""
        analysis = await self.analyze(scope)
        ticket_ids = [pair.ticket_id for pair in analysis.mismatched]
        if not ticket_ids:
            return "No mismatched tickets"
        operation = await self.executor.execute(
            scope, OperationType.SYNC, ticket_ids, analysis=analysis, trigger="auto-sync"
        )
        return operation.summary

    async def auto_create_tick(self, scope: SyncScope) -> str:
        """One auto-create pass: create a counterpart for every missing ticket."""
        analysis = await self.analyze(scope)
        ticket_ids = [missing.ticket_id for missing in analysis.missing]
        if not ticket_ids:
            return "No missing tickets"
        operation = await self.executor.execute(
            scope, OperationType.CREATE, ticket_ids, analysis=analysis, trigger="auto-create"
        )
        return operation.summary

    # Ignore registry

    async def ignore(
        self,
        scope: SyncScope,
        ticket_id: str,
        action: str = "add",
        ignore_type: IgnoreType = IgnoreType.TEMP,
        platform: Platform = Platform.ASANA,
    ) -> Optional[IgnoredTicket]:
        if action == "remove":
            await self.ignores.remove(scope, ticket_id, platform)
            return None
        return await self.ignores.add(scope, ticket_id, ignore_type, platform)

    def list_ignored(self, scope: SyncScope, platform: Optional[Platform] = None) -> List[IgnoredTicket]:
        return self.ignores.list_ignored(scope, platform)

    async def clear_temporary_ignores(self, scope: SyncScope) -> int:
        return await self.ignores.clear_temporary(scope)

    # Mappings

    def list_mappings(self, scope: SyncScope) -> List[TicketMapping]:
        return self.storage.list_mappings(scope.user_id, scope.task_project_id)

    async def link(self, scope: SyncScope, task_id: str, issue_id: str) -> TicketMapping:
        """Manually link a task to an issue. Idempotent; conflicting links raise MappingConflictError."""
        async with self.locks.user(scope.user_id):
            mapping, created = self.storage.create_mapping(
                scope.user_id, scope.task_project_id, task_id, scope.issue_project_id, issue_id
            )
            if created:
                self.audit.log(
                    user_id=scope.user_id, ticket_id=task_id, platform=Platform.ASANA,
                    action=AuditAction.MAPPING_ADDED, actor=scope.actor, field_name="mapping",
                    new_value=f"{task_id} -> {issue_id}",
                )
                log.info(f"Linked {task_id} -> {issue_id} for user {scope.user_id}")
        return mapping

    async def unlink(self, scope: SyncScope, task_id: str) -> Optional[TicketMapping]:
        async with self.locks.user(scope.user_id):
            removed = self.storage.delete_mapping(scope.user_id, task_id)
            if removed:
                self.audit.log(
                    user_id=scope.user_id, ticket_id=task_id, platform=Platform.ASANA,
                    action=AuditAction.DELETED, actor=scope.actor, field_name="mapping",
                    old_value=f"{removed.task_id} -> {removed.issue_id}",
                )
                log.info(f"Unlinked {removed.task_id} -> {removed.issue_id} for user {scope.user_id}")
        return removed

    # History and rollback

    def sync_history(self, scope: SyncScope, limit: int = 50) -> List[SyncOperation]:
        return self.storage.list_operations(scope.user_id, limit=limit)

    def get_operation(self, scope: SyncScope, operation_id: int) -> Optional[SyncOperation]:
        operation = self.storage.get_operation(operation_id)
        if operation is None or operation.user_id != scope.user_id:
            return None
        return operation

    async def rollback(self, scope: SyncScope, operation_id: int) -> SyncOperation:
        return await self.rollback_manager.rollback(scope, operation_id)

    def purge_expired_snapshots(self) -> int:
        return self.rollback_manager.purge_expired()

    # Audit

    def audit_logs(self, filters: AuditLogFilter) -> List[AuditLogEntry]:
        return self.audit.query(filters)

    def audit_logs_export_csv(self, filters: AuditLogFilter) -> bytes:
        return self.audit.export_csv(filters)

    def audit_stats(self, user_id: Optional[int] = None) -> dict:
        return self.audit.stats(user_id)

    # Schedulers

    def scheduler_control(self, which: SchedulerKind, action: str, interval: Optional[int] = None) -> SchedulerStatus:
        if self.scheduler is None:
            raise ConfigurationError("Scheduler is not running")
        if action == "start":
            return self.scheduler.start(which, interval)
        return self.scheduler.stop(which)

    def scheduler_status(self) -> List[SchedulerStatus]:
        if self.scheduler is None:
            raise ConfigurationError("Scheduler is not running")
        return [self.scheduler.status(kind) for kind in SchedulerKind]

    async def close(self) -> None:
        await self.task_connector.close()
        await self.issue_connector.close()
        self.storage.close()
