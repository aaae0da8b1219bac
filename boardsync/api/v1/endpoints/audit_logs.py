from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from boardsync.api.deps import get_board_sync_service, get_scope
from boardsync.schemas.audit import AuditAction, AuditLogEntry, AuditLogFilter
from boardsync.schemas.common import Platform
from boardsync.schemas.sync import SyncScope
from boardsync.services.board_sync import BoardSyncService

router = APIRouter()


def audit_filters(
    ticket_id: Optional[str] = Query(None, description="Filter by ticket id"),
    platform: Optional[Platform] = Query(None, description="Filter by platform"),
    action_type: Optional[AuditAction] = Query(None, description="Filter by action type"),
    actor: Optional[str] = Query(None, description="Filter by actor"),
    operation_id: Optional[int] = Query(None, description="Filter by sync operation"),
    start_date: Optional[datetime] = Query(None, description="Filter created_at >= start_date"),
    end_date: Optional[datetime] = Query(None, description="Filter created_at <= end_date (a date covers the whole day)"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    scope: SyncScope = Depends(get_scope),
) -> AuditLogFilter:
    return AuditLogFilter(
        user_id=scope.user_id,
        ticket_id=ticket_id,
        platform=platform,
        action_type=action_type,
        actor=actor,
        operation_id=operation_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=skip,
    )


@router.get("/", response_model=List[AuditLogEntry])
async def read_audit_logs(
    filters: AuditLogFilter = Depends(audit_filters),
    service: BoardSyncService = Depends(get_board_sync_service),
):
    """Retrieve audit logs with optional filters, newest first."""
    return service.audit_logs(filters)


@router.get("/export")
async def export_audit_logs(
    filters: AuditLogFilter = Depends(audit_filters),
    service: BoardSyncService = Depends(get_board_sync_service),
):
    """Every entry matching the filters as CSV (pagination is ignored)."""
    content = service.audit_logs_export_csv(filters)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=audit_logs.csv"},
    )


@router.get("/stats")
async def audit_log_stats(
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    return service.audit_stats(scope.user_id)
