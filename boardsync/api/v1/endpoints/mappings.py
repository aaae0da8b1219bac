from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from boardsync.api.deps import get_board_sync_service, get_scope
from boardsync.schemas.mapping import TicketMapping, TicketMappingCreate
from boardsync.schemas.sync import SyncScope
from boardsync.services.board_sync import BoardSyncService

router = APIRouter()


@router.post("/", response_model=TicketMapping, status_code=status.HTTP_201_CREATED)
async def create_mapping(
    mapping: TicketMappingCreate,
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    """Link a task to an issue manually."""
    return await service.link(scope, mapping.task_id, mapping.issue_id)


@router.get("/", response_model=List[TicketMapping])
async def read_mappings(
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    return service.list_mappings(scope)


@router.delete("/{task_id}", response_model=TicketMapping)
async def delete_mapping(
    task_id: str,
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    removed = await service.unlink(scope, task_id)
    if removed is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mapping not found")
    return removed
