from fastapi import APIRouter, Depends, Query, status

from curator.api.errors import http_error, require_scopes
from curator.core.config import Settings, get_settings
from curator.core.security import get_human_principal
from curator.schemas.migrations import (
    AnalyzeTagsOut,
    CleanupOut,
    MigrationActionOut,
    MigrationConfigIn,
    MigrationCreatedOut,
    MigrationJobOut,
    MigrationListOut,
    MigrationStatsResponse,
    MigrationStatusName,
    MigrationStatusOut,
    RollbackOut,
    ValidationResultOut,
)
from curator.services.container import get_migration_service
from curator.services.documents import RepositoryError

router = APIRouter()


@router.get("/analyze-tags", response_model=AnalyzeTagsOut)
async def analyze_tags(
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
    limit: int = Query(default=1000, ge=1, le=10000),
    exclude_existing: bool = Query(default=True, alias="excludeExisting"),
) -> AnalyzeTagsOut:
    require_scopes(principal, {"migrations:read"})
    try:
        analysis = await service.analyze_tags_for_mappings(limit=limit, exclude_existing=exclude_existing)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return AnalyzeTagsOut.model_validate(analysis)


@router.post("/validate", response_model=ValidationResultOut)
async def validate_migration(
    payload: MigrationConfigIn,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> ValidationResultOut:
    require_scopes(principal, {"migrations:read"})
    try:
        result = await service.validate_migration(payload.to_config())
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ValidationResultOut.model_validate(result.to_dict())


@router.post("/create", response_model=MigrationCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_migration(
    payload: MigrationConfigIn,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> MigrationCreatedOut:
    require_scopes(principal, {"migrations:write"})
    try:
        created = await service.create_migration_job(payload.to_config(), principal.actor_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationCreatedOut.model_validate(created)


@router.post("/dry-run", response_model=MigrationActionOut, status_code=status.HTTP_202_ACCEPTED)
async def start_dry_run(
    payload: MigrationConfigIn,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> MigrationActionOut:
    # Dry runs never write posts, so read access is enough.
    require_scopes(principal, {"migrations:read"})
    try:
        started = await service.start_dry_run(payload.to_config(), principal.actor_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationActionOut(migration_id=started["migrationId"], status="started", message=started["message"])


@router.get("/stats", response_model=MigrationStatsResponse)
async def migration_stats(
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> MigrationStatsResponse:
    require_scopes(principal, {"migrations:read"})
    try:
        stats = await service.get_migration_stats()
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationStatsResponse.model_validate({"stats": stats})


@router.get("", response_model=MigrationListOut)
async def list_migrations(
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: MigrationStatusName | None = Query(default=None, alias="status"),
    user_id: str | None = Query(default=None, alias="userId"),
) -> MigrationListOut:
    require_scopes(principal, {"migrations:read"})
    try:
        rows = await service.list_migrations(limit=limit, status=status_filter, user_id=user_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationListOut(migrations=[MigrationJobOut.model_validate(row) for row in rows])


@router.get("/{migration_id}/status", response_model=MigrationStatusOut)
async def migration_status(
    migration_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> MigrationStatusOut:
    require_scopes(principal, {"migrations:read"})
    try:
        job = await service.get_migration_status(migration_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationStatusOut(migration=MigrationJobOut.model_validate(job))


@router.post("/{migration_id}/start", response_model=MigrationActionOut, status_code=status.HTTP_202_ACCEPTED)
async def start_migration(
    migration_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> MigrationActionOut:
    require_scopes(principal, {"migrations:write"})
    try:
        handle = await service.start_migration(migration_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationActionOut(migration_id=handle.job_id, status="started", message="Migration started successfully")


@router.post("/{migration_id}/pause", response_model=MigrationActionOut)
async def pause_migration(
    migration_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> MigrationActionOut:
    require_scopes(principal, {"migrations:write"})
    try:
        result = await service.pause_migration(migration_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationActionOut(migration_id=migration_id, status=result["status"], message="Pause requested")


@router.post("/{migration_id}/stop", response_model=MigrationActionOut)
async def stop_migration(
    migration_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> MigrationActionOut:
    require_scopes(principal, {"migrations:write"})
    try:
        result = await service.stop_migration(migration_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return MigrationActionOut(migration_id=migration_id, status=result["status"], message="Migration stopped")


@router.post("/{migration_id}/rollback", response_model=RollbackOut)
async def rollback_migration(
    migration_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
) -> RollbackOut:
    require_scopes(principal, {"migrations:write"})
    try:
        result = await service.rollback_migration(migration_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return RollbackOut.model_validate(result)


@router.delete("/cleanup", response_model=CleanupOut)
async def cleanup_migrations(
    principal=Depends(get_human_principal),
    service=Depends(get_migration_service),
    settings: Settings = Depends(get_settings),
    days_old: int | None = Query(default=None, ge=1, alias="daysOld"),
) -> CleanupOut:
    require_scopes(principal, {"migrations:admin"})
    try:
        result = await service.cleanup_old_migrations(days_old or settings.migration_cleanup_default_days)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return CleanupOut.model_validate(result)

