from fastapi import APIRouter

from boardsync.api.v1.endpoints import analysis, audit_logs, ignore, mappings, schedule, sync

api_router = APIRouter()
api_router.include_router(analysis.router, prefix="/analysis", tags=["analysis"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(ignore.router, prefix="/ignore", tags=["ignore"])
api_router.include_router(mappings.router, prefix="/mappings", tags=["mappings"])
api_router.include_router(schedule.router, prefix="/scheduler", tags=["scheduler"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit-logs"])
