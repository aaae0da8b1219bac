from datetime import datetime, time, timezone
from typing import Optional

from boardsync.schemas.audit import AuditLogEntry, AuditLogFilter
from boardsync.utils.timeutils import as_utc


def date_bounds(filters: AuditLogFilter):
    """Resolve the inclusive [start, end] range; a midnight end date covers that whole day."""
    start: Optional[datetime] = as_utc(filters.start_date)
    end: Optional[datetime] = as_utc(filters.end_date)
    if end is not None and end.time() == time(0, 0):
        end = end.replace(hour=23, minute=59, second=59, microsecond=999999)
    return start, end


def matches_audit_filter(entry: AuditLogEntry, filters: AuditLogFilter) -> bool:
    start, end = date_bounds(filters)
    created = as_utc(entry.created_at) or datetime.min.replace(tzinfo=timezone.utc)
    if filters.user_id is not None and entry.user_id != filters.user_id:
        return False
    if filters.ticket_id and entry.ticket_id != filters.ticket_id:
        return False
    if filters.platform and entry.platform != filters.platform:
        return False
    if filters.action_type and entry.action_type != filters.action_type:
        return False
    if filters.actor and entry.actor != filters.actor:
        return False
    if filters.operation_id is not None and entry.operation_id != filters.operation_id:
        return False
    if start and created < start:
        return False
    if end and created > end:
        return False
    return True
