from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from boardsync.api.deps import get_board_sync_service, get_scope
from boardsync.schemas.common import Platform
from boardsync.schemas.ignore import IgnoredTicket, IgnoreRequest
from boardsync.schemas.sync import SyncScope
from boardsync.services.board_sync import BoardSyncService

router = APIRouter()


@router.post("/")
async def update_ignore(
    request: IgnoreRequest,
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    """Add a ticket to, or remove it from, the ignore registry."""
    entry = await service.ignore(scope, request.ticket_id, request.action, request.type, request.platform)
    return {
        "status": "success",
        "action": request.action,
        "ticket_id": request.ticket_id,
        "ignored": entry,
    }


@router.get("/", response_model=List[IgnoredTicket])
async def list_ignored(
    platform: Optional[Platform] = Query(None),
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    return service.list_ignored(scope, platform)


@router.delete("/temporary")
async def clear_temporary(
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    """Drop every temporary ignore; permanent ignores stay."""
    cleared = await service.clear_temporary_ignores(scope)
    return {"status": "success", "cleared": cleared}
