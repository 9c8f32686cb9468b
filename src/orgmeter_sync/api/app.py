"""
FastAPI application exposing OrgMeter sync jobs, selection and status.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, BackgroundTasks, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..core.config import SyncSettings
from ..engine.base import EntitySyncEngine
from ..engine.graph import get_engine_class, resolve_sync_order
from ..exceptions import (
    ConfigurationError, FunderNotFoundError, JobConflictError, JobNotFoundError, OrgMeterSyncError
)
from ..models.jobs import JobParameters, SyncJob
from ..models.sync import SyncStatusFilter
from ..services.firestore import FirestoreRepository
from ..services.jobs import SyncJobService
from ..services.repository import DocumentRepository
from ..version import __version__

logger = logging.getLogger(__name__)

# Global services (initialized in lifespan)
settings: SyncSettings = SyncSettings()
repository: Optional[DocumentRepository] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global settings, repository

    settings = SyncSettings.from_env()
    try:
        repository = FirestoreRepository(settings.project_id, settings.collection_prefix)
        logger.info("Firestore repository initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize Firestore repository: {e}")
        repository = None

    yield

    logger.info("Application shutdown")


app = FastAPI(
    title="OrgMeter Sync API",
    description="API for syncing imported OrgMeter records into the CRM",
    version=__version__,
    lifespan=lifespan
)

allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]

if not allowed_origins:
    # Default to allowing all for local dev if not set
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency injection
def get_settings() -> SyncSettings:
    return settings


def get_repository() -> DocumentRepository:
    if repository is None:
        raise HTTPException(status_code=500, detail="Firestore repository not initialized")
    return repository


def get_job_service(
    repo: DocumentRepository = Depends(get_repository),
    config: SyncSettings = Depends(get_settings)
) -> SyncJobService:
    return SyncJobService(repo, user_id=config.sync_user)


def _raise_http(e: Exception, action: str) -> None:
    """Translate a failure into the HTTP error callers see."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, (FunderNotFoundError, JobNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, JobConflictError):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConfigurationError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, OrgMeterSyncError):
        logger.error(f"Failed to {action}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    logger.error(f"An unexpected error occurred while trying to {action}: {e}")
    raise HTTPException(status_code=500, detail="An unexpected error occurred.")


def _engine(entity_type: str, funder: Optional[str], repo: DocumentRepository, config: SyncSettings) -> EntitySyncEngine:
    engine_class = get_engine_class(entity_type)
    return engine_class(repo, config.require_funder(funder), config.sync_user)


# Request models
class StartSyncRequest(BaseModel):
    funder: Optional[str] = Field(None, description="Funder id, defaults to ORGMETER_FUNDER_ID")
    update_existing: bool = True
    only_selected: bool = True
    dry_run: bool = False


class MarkRequest(BaseModel):
    ids: List[int] = Field(..., description="OrgMeter ids to select for the next sync")
    funder: Optional[str] = None


# Health check endpoint
@app.get("/health")
async def health_check():
    """Check the health of the application and its services."""
    return {
        "status": "healthy",
        "version": __version__,
        "services": {
            "firestore": repository is not None,
        }
    }


@app.get("/api/v1/sync/order")
async def get_sync_order(entity_types: Optional[List[str]] = Query(None)):
    """Order in which the given (or all) entity types are synced."""
    try:
        return {"order": resolve_sync_order(entity_types or None)}
    except Exception as e:
        _raise_http(e, "resolve sync order")


@app.post("/api/v1/sync/{entity_type}/start", response_model=SyncJob)
def start_sync(
    entity_type: str,
    request: StartSyncRequest,
    background_tasks: BackgroundTasks,
    repo: DocumentRepository = Depends(get_repository),
    config: SyncSettings = Depends(get_settings),
    jobs: SyncJobService = Depends(get_job_service)
):
    """Create a sync job for one entity type and run it in the background."""
    try:
        engine = _engine(entity_type, request.funder, repo, config)
        engine.verify_funder()

        job = jobs.create_job(entity_type, JobParameters(
            funder=engine.funder_id,
            update_existing=request.update_existing,
            only_selected=request.only_selected,
            dry_run=request.dry_run,
        ))
        background_tasks.add_task(jobs.run_job, job)
        return job
    except Exception as e:
        _raise_http(e, f"start {entity_type} sync")


@app.post("/api/v1/sync/jobs/{job_id}/continue", response_model=SyncJob)
def continue_sync(
    job_id: str,
    background_tasks: BackgroundTasks,
    jobs: SyncJobService = Depends(get_job_service)
):
    """Resume a failed or interrupted job from where it stopped."""
    try:
        job = jobs.claim_continuation(job_id)
        background_tasks.add_task(jobs.run_job, job, job.progress.processed)
        return job
    except Exception as e:
        _raise_http(e, f"continue sync job {job_id}")


@app.get("/api/v1/sync/jobs/{job_id}", response_model=SyncJob)
def get_sync_job(job_id: str, jobs: SyncJobService = Depends(get_job_service)):
    """Get a sync job with its progress and results."""
    try:
        return jobs.get_job(job_id)
    except Exception as e:
        _raise_http(e, f"get sync job {job_id}")


@app.post("/api/v1/sync/{entity_type}/mark")
def mark_for_sync(
    entity_type: str,
    request: MarkRequest,
    repo: DocumentRepository = Depends(get_repository),
    config: SyncSettings = Depends(get_settings)
):
    """Select OrgMeter records of one entity type for the next sync."""
    try:
        engine = _engine(entity_type, request.funder, repo, config)
        return engine.mark_for_sync(request.ids).to_dict()
    except Exception as e:
        _raise_http(e, f"mark {entity_type} records for sync")


@app.get("/api/v1/sync/{entity_type}/status")
def get_sync_status(
    entity_type: str,
    funder: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    search: Optional[str] = None,
    sync_status: SyncStatusFilter = SyncStatusFilter.ALL,
    repo: DocumentRepository = Depends(get_repository),
    config: SyncSettings = Depends(get_settings)
):
    """Paginated sync state of the OrgMeter records of one entity type."""
    try:
        engine = _engine(entity_type, funder, repo, config)
        return engine.get_sync_status(page=page, limit=limit, search=search, sync_status=sync_status).to_dict()
    except Exception as e:
        _raise_http(e, f"get {entity_type} sync status")
