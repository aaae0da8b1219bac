"""Append-only audit trail with filtered reads and CSV export."""

import csv
import logging
from io import StringIO
from typing import Any, Dict, List, Optional

from boardsync.schemas.audit import AuditAction, AuditLogCreate, AuditLogEntry, AuditLogFilter
from boardsync.schemas.common import Platform
from boardsync.services.snapshot_cleanup import get_audit_log_stats
from boardsync.storage.base import Storage

log = logging.getLogger(__name__)

CSV_HEADER = [
    "Timestamp", "User Email", "Ticket ID", "Platform", "Action Type", "Field Name", "Old Value", "New Value",
]


def stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class AuditService:
    """Write path and read path over `Storage` audit rows. There is no update or delete."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def log(
        self,
        *,
        user_id: int,
        ticket_id: str,
        platform: Platform,
        action: AuditAction,
        actor: str,
        operation_id: Optional[int] = None,
        field_name: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
    ) -> AuditLogEntry:
        entry = self.storage.append_audit(AuditLogCreate(
            operation_id=operation_id,
            user_id=user_id,
            ticket_id=ticket_id,
            platform=platform,
            action_type=action,
            actor=actor,
            field_name=field_name,
            old_value=stringify(old_value),
            new_value=stringify(new_value),
        ))
        log.debug(
            f"Audit: {action.value} {platform.value}:{ticket_id}"
            + (f" {field_name}: {entry.old_value!r} -> {entry.new_value!r}" if field_name else "")
        )
        return entry

    def log_field_change(
        self, *, user_id: int, ticket_id: str, platform: Platform, actor: str, field_name: str,
        old_value: Any, new_value: Any, operation_id: Optional[int] = None,
    ) -> AuditLogEntry:
        """Status moves are recorded as status_changed, everything else as updated."""
        action = AuditAction.STATUS_CHANGED if field_name == "status" else AuditAction.UPDATED
        return self.log(
            user_id=user_id, ticket_id=ticket_id, platform=platform, action=action, actor=actor,
            operation_id=operation_id, field_name=field_name, old_value=old_value, new_value=new_value,
        )

    def query(self, filters: AuditLogFilter) -> List[AuditLogEntry]:
        return self.storage.query_audit(filters)

    def export_csv(self, filters: AuditLogFilter) -> bytes:
        """Full export (pagination in `filters` is ignored)."""
        rows = self.storage.query_audit(filters.model_copy(update={"limit": None, "offset": 0}))
        buffer = StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADER)
        for entry in rows:
            writer.writerow([
                entry.created_at.isoformat(),
                entry.actor,
                entry.ticket_id,
                entry.platform.value,
                entry.action_type.value,
                entry.field_name or "",
                entry.old_value or "",
                entry.new_value or "",
            ])
        log.info(f"Exported {len(rows)} audit log entries to CSV")
        return buffer.getvalue().encode("utf-8")

    def stats(self, user_id: Optional[int] = None) -> Dict[str, Any]:
        return get_audit_log_stats(self.storage, user_id)
