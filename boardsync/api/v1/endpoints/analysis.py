from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from boardsync.api.deps import get_board_sync_service, get_scope
from boardsync.schemas.common import Direction
from boardsync.schemas.reconcile import AnalysisResponse
from boardsync.schemas.sync import SyncScope
from boardsync.services.board_sync import BoardSyncService

router = APIRouter()


@router.get("/", response_model=AnalysisResponse)
async def analyze(
    column: Optional[List[str]] = Query(None, description="Only analyse tasks in these board columns"),
    direction: Direction = Query(Direction.FORWARD),
    creator: Optional[str] = Query(None, description="Only analyse tickets created by this user"),
    service: BoardSyncService = Depends(get_board_sync_service),
    scope: SyncScope = Depends(get_scope),
):
    """Classify every task and issue into reconciliation buckets."""
    result = await service.analyze(scope, column_filter=column, direction=direction, creator_filter=creator)
    return AnalysisResponse.from_result(result)
