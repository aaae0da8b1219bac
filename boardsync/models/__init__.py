"""Database models."""

from boardsync.models.ticket_mapping import TicketMapping
from boardsync.models.ignored_ticket import IgnoredTicket
from boardsync.models.sync_operation import SyncOperation
from boardsync.models.rollback_snapshot import RollbackSnapshot
from boardsync.models.audit_log import AuditLog

__all__ = [
    "TicketMapping",
    "IgnoredTicket",
    "SyncOperation",
    "RollbackSnapshot",
    "AuditLog",
]
