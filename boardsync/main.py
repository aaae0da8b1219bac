"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from boardsync import __version__
from boardsync.api.deps import get_scope
from boardsync.api.v1.api import api_router
from boardsync.config import Settings, settings
from boardsync.connectors.asana_connector import AsanaConnector
from boardsync.connectors.youtrack_connector import YouTrackConnector
from boardsync.exceptions import (
    BatchInProgressError,
    ConfigurationError,
    MappingConflictError,
    RemoteError,
    RollbackError,
)
from boardsync.log_config import configure_logging
from boardsync.scheduler import SchedulerManager
from boardsync.schemas.schedule import SchedulerKind
from boardsync.services.board_sync import BoardSyncService
from boardsync.services.mapper import FieldMapper
from boardsync.services.snapshot_cleanup import cleanup_expired_snapshots
from boardsync.storage import create_storage

configure_logging(settings.log_level)

log = logging.getLogger(__name__)


def build_service(app_settings: Settings) -> BoardSyncService:
    """Storage, connectors and the service facade for one process."""
    storage = create_storage(app_settings)
    task_connector = AsanaConnector(
        app_settings.asana_base_url,
        app_settings.asana_token,
        app_settings.asana_project_id,
        timeout=app_settings.http_timeout_seconds,
    )
    issue_connector = YouTrackConnector(
        app_settings.youtrack_base_url,
        app_settings.youtrack_token,
        app_settings.youtrack_project_id,
        timeout=app_settings.http_timeout_seconds,
    )
    return BoardSyncService(
        storage,
        task_connector,
        issue_connector,
        mapper=FieldMapper.from_settings(app_settings),
        retention_days=app_settings.snapshot_retention_days,
        max_concurrency=app_settings.sync_max_concurrency,
    )


def build_scheduler(service: BoardSyncService, app_settings: Settings) -> SchedulerManager:
    scope = get_scope()
    manager = SchedulerManager(
        ticks={
            SchedulerKind.AUTO_SYNC: partial(service.auto_sync_tick, scope),
            SchedulerKind.AUTO_CREATE: partial(service.auto_create_tick, scope),
        },
        default_intervals={
            SchedulerKind.AUTO_SYNC: app_settings.auto_sync_interval_seconds,
            SchedulerKind.AUTO_CREATE: app_settings.auto_create_interval_seconds,
        },
    )
    manager.schedule_snapshot_cleanup(
        partial(cleanup_expired_snapshots, service.storage), hours=app_settings.snapshot_cleanup_hours
    )
    return manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = build_service(settings)
    service.scheduler = build_scheduler(service, settings)
    service.scheduler.start_engine()
    app.state.board_sync = service
    log.info(f"BoardSync {__version__} started (storage: {settings.storage_backend})")
    try:
        yield
    finally:
        service.scheduler.shutdown()
        await service.close()
        log.info("BoardSync shut down")


app = FastAPI(
    title="BoardSync",
    description="Reconciliation and synchronization between an Asana board and a YouTrack project",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__
    }


@app.get("/")
async def root():
    """Root endpoint - redirect to docs."""
    return {
        "message": "BoardSync API",
        "version": __version__,
        "docs": "/docs"
    }


app.include_router(api_router, prefix=settings.api_v1_str)


@app.exception_handler(BatchInProgressError)
async def batch_in_progress_handler(request: Request, exc: BatchInProgressError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(MappingConflictError)
async def mapping_conflict_handler(request: Request, exc: MappingConflictError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(RollbackError)
async def rollback_error_handler(request: Request, exc: RollbackError):
    code = status.HTTP_404_NOT_FOUND if exc.code == RollbackError.NOT_FOUND else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content={"detail": str(exc), "code": exc.code})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(RemoteError)
async def remote_error_handler(request: Request, exc: RemoteError):
    log.error(f"Remote error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "platform": exc.platform, "status_code": exc.status_code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn_level = "debug" if settings.log_level.upper() == "VERBOSE" else settings.log_level.lower()
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=uvicorn_level)
