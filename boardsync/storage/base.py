"""Storage capability shared by both backends."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from boardsync.schemas.audit import AuditLogCreate, AuditLogEntry, AuditLogFilter
from boardsync.schemas.ignore import IgnoredTicket, IgnoreType
from boardsync.schemas.mapping import TicketMapping
from boardsync.schemas.rollback import RollbackSnapshot
from boardsync.schemas.sync import SyncOperation


class Storage(ABC):
    """Abstract persistence for mappings, ignores, operations, snapshots and audit logs.

    Every method is a single atomic unit. Callers that read-then-write hold the
    per-user lock from `boardsync.services.locks`.
    """

    # Ticket mappings

    @abstractmethod
    def list_mappings(self, user_id: int, task_project_id: Optional[str] = None) -> List[TicketMapping]:
        pass

    @abstractmethod
    def get_mapping_by_task(self, user_id: int, task_id: str) -> Optional[TicketMapping]:
        pass

    @abstractmethod
    def get_mapping_by_issue(self, user_id: int, issue_id: str) -> Optional[TicketMapping]:
        pass

    @abstractmethod
    def create_mapping(
        self, user_id: int, task_project_id: str, task_id: str, issue_project_id: str, issue_id: str
    ) -> Tuple[TicketMapping, bool]:
        """Create-or-get. Returns (mapping, created).

        Raises MappingConflictError when the task or the issue is already linked
        to a different counterpart.
        """

    @abstractmethod
    def delete_mapping(self, user_id: int, task_id: str) -> Optional[TicketMapping]:
        """Remove the mapping for a task; returns the removed row, if any."""

    # Ignore registry

    @abstractmethod
    def add_ignore(self, user_id: int, project_id: str, ticket_id: str, ignore_type: IgnoreType) -> IgnoredTicket:
        """Insert, or change the type of an existing entry."""

    @abstractmethod
    def remove_ignore(self, user_id: int, project_id: str, ticket_id: str) -> bool:
        pass

    @abstractmethod
    def list_ignored(self, user_id: int, project_id: Optional[str] = None) -> List[IgnoredTicket]:
        pass

    @abstractmethod
    def clear_ignores(self, user_id: int, project_id: str, ignore_type: IgnoreType) -> int:
        pass

    # Operations and snapshots

    @abstractmethod
    def create_operation(
        self, operation: SyncOperation, snapshot: Optional[RollbackSnapshot] = None
    ) -> Tuple[SyncOperation, Optional[RollbackSnapshot]]:
        """Persist a new operation and, atomically with it, its snapshot."""

    @abstractmethod
    def save_operation(self, operation: SyncOperation) -> SyncOperation:
        pass

    @abstractmethod
    def get_operation(self, operation_id: int) -> Optional[SyncOperation]:
        pass

    @abstractmethod
    def list_operations(self, user_id: int, limit: int = 50) -> List[SyncOperation]:
        """Newest first."""

    @abstractmethod
    def save_snapshot(self, snapshot: RollbackSnapshot) -> RollbackSnapshot:
        pass

    @abstractmethod
    def get_snapshot(self, operation_id: int) -> Optional[RollbackSnapshot]:
        pass

    @abstractmethod
    def delete_snapshot(self, operation_id: int) -> bool:
        pass

    @abstractmethod
    def purge_expired_snapshots(self, now: datetime) -> int:
        pass

    # Audit log (append-only)

    @abstractmethod
    def append_audit(self, entry: AuditLogCreate) -> AuditLogEntry:
        pass

    @abstractmethod
    def query_audit(self, filters: AuditLogFilter) -> List[AuditLogEntry]:
        """Newest first."""

    @abstractmethod
    def count_audit_by_action(self, user_id: Optional[int] = None) -> Dict[str, int]:
        pass

    def close(self) -> None:
        """Release backend resources."""
