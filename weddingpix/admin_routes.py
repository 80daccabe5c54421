"""
Admin endpoints: login, user listing and the migration tooling.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from weddingpix.auth import (
    ADMIN_SUBJECT,
    SessionUser,
    check_admin_credentials,
    create_session_token,
    require_admin,
)
from weddingpix.config import get_settings
from weddingpix.db import GalleryStore
from weddingpix.dependencies import (
    get_gallery_store,
    get_migration_service,
    get_queue_client,
    get_user_migration_service,
)
from weddingpix.errors import InvalidUserError
from weddingpix.migration import DataMigrationService
from weddingpix.queue import JobQueue
from weddingpix.routes import user_response
from weddingpix.schemas import (
    AdminLoginRequest,
    MigrationRunResponse,
    MigrationStatsResponse,
    MigrationStatusResponse,
    SecurityAnalysisResponse,
    SessionResponse,
    UserMigrationRequest,
    UserResponse,
    ValidationResponse,
)
from weddingpix.user_migration import UserDataMigrationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


@router.post("/login", response_model=SessionResponse)
def admin_login(payload: AdminLoginRequest):
    if not check_admin_credentials(payload.username, payload.password):
        raise HTTPException(status_code=401, detail="Invalid admin credentials")
    settings = get_settings()
    logger.info("Admin session issued for %s", payload.username)
    return SessionResponse(
        access_token=create_session_token(ADMIN_SUBJECT, payload.username, is_admin=True),
        expires_in=settings.session_ttl_hours * 3600,
        message="Admin login successful",
    )


@router.get("/users", response_model=list[UserResponse])
def list_users(
    admin: SessionUser = Depends(require_admin),
    store: GalleryStore = Depends(get_gallery_store),
):
    return [user_response(user) for user in store.list_users()]


@router.get("/migration/analysis", response_model=SecurityAnalysisResponse)
def security_analysis(
    admin: SessionUser = Depends(require_admin),
    service: DataMigrationService = Depends(get_migration_service),
):
    return SecurityAnalysisResponse(**service.analyze_security_issues().as_dict())


@router.get("/migration/validation", response_model=ValidationResponse)
def validate_isolation(
    admin: SessionUser = Depends(require_admin),
    service: DataMigrationService = Depends(get_migration_service),
):
    result = service.validate_data_isolation()
    return ValidationResponse(**result.as_dict(), per_user_counts=service.per_user_counts())


@router.post("/migration/users/{user_id}", response_model=MigrationStatsResponse)
def migrate_user(
    user_id: str,
    payload: UserMigrationRequest | None = None,
    admin: SessionUser = Depends(require_admin),
    service: UserDataMigrationService = Depends(get_user_migration_service),
):
    delete_source = payload.delete_source if payload else False
    try:
        stats = service.migrate_user_data(user_id, delete_source=delete_source)
    except InvalidUserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MigrationStatsResponse(**stats.as_dict())


@router.get("/migration/users/{user_id}/status", response_model=MigrationStatusResponse)
def migration_status(
    user_id: str,
    admin: SessionUser = Depends(require_admin),
    service: UserDataMigrationService = Depends(get_user_migration_service),
):
    try:
        status = service.check_migration_status(user_id)
    except InvalidUserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MigrationStatusResponse(**status.as_dict())


@router.post("/migration/runs", response_model=MigrationRunResponse, status_code=202)
def start_migration_run(
    admin: SessionUser = Depends(require_admin),
    store: GalleryStore = Depends(get_gallery_store),
    queue: JobQueue = Depends(get_queue_client),
):
    """
    Enqueue a full migration run. The worker executes the steps.
    """
    job = store.create_migration_job()
    queue.enqueue(job.job_id)
    logger.info("Migration run %s enqueued by %s", job.job_id, admin.username)
    return MigrationRunResponse(**job.as_dict())


@router.get("/migration/runs/{job_id}", response_model=MigrationRunResponse)
def get_migration_run(
    job_id: str,
    admin: SessionUser = Depends(require_admin),
    store: GalleryStore = Depends(get_gallery_store),
):
    job = store.get_migration_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Migration run not found")
    return MigrationRunResponse(**job.as_dict())
