import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from boardsync.api.deps import get_board_sync_service, get_scope
from boardsync.schemas.sync import ExecuteRequest, SyncOperation, SyncScope
from boardsync.services.board_sync import BoardSyncService

log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/execute", response_model=SyncOperation)
async def execute(
    request: ExecuteRequest,
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    """Run a create, sync or delete batch for the given tickets."""
    if not request.ticket_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="ticket_ids must not be empty")
    log.info(f"Execute request: {request.operation_type.value} for {len(request.ticket_ids)} tickets")
    try:
        return await service.execute(
            scope,
            request.operation_type,
            request.ticket_ids,
            source=request.source,
            direction=request.direction,
        )
    except ValueError as ve:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))


@router.get("/history", response_model=List[SyncOperation])
async def sync_history(
    limit: int = Query(50, ge=1, le=500),
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    """Past operations, newest first."""
    return service.sync_history(scope, limit=limit)


@router.get("/history/{operation_id}", response_model=SyncOperation)
async def get_operation(
    operation_id: int,
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    operation = service.get_operation(scope, operation_id)
    if operation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Operation not found")
    return operation


@router.post("/rollback/{operation_id}", response_model=SyncOperation)
async def rollback(
    operation_id: int,
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    """Undo an operation from its snapshot."""
    return await service.rollback(scope, operation_id)
