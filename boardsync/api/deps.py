"""Shared FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from boardsync.config import settings
from boardsync.schemas.sync import SyncScope
from boardsync.services.board_sync import BoardSyncService


def get_board_sync_service(request: Request) -> BoardSyncService:
    service = getattr(request.app.state, "board_sync", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync service is not initialized"
        )
    return service


def get_scope() -> SyncScope:
    """Single-tenant scope: the configured user acting on the configured project pair."""
    return SyncScope(
        user_id=settings.sync_user_id,
        task_project_id=settings.asana_project_id,
        issue_project_id=settings.youtrack_project_id,
        actor=settings.sync_actor,
    )
