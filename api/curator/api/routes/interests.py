from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, status

from curator.api.errors import http_error, require_scopes
from curator.core.security import get_human_principal
from curator.schemas.interests import (
    InterestCreateRequest,
    InterestListOut,
    InterestOut,
    InterestResponse,
    InterestSeedOut,
    InterestSyncOut,
)
from curator.services.container import get_interest_service
from curator.services.documents import RepositoryError

router = APIRouter()


@router.get("", response_model=InterestListOut)
async def list_interests(
    principal=Depends(get_human_principal),
    service=Depends(get_interest_service),
    level: int | None = Query(default=None, ge=0),
) -> InterestListOut:
    require_scopes(principal, {"interests:read"})
    try:
        interests = await service.list_interests(level=level)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return InterestListOut(interests=[InterestOut(**asdict(interest)) for interest in interests])


@router.post("", response_model=InterestResponse, status_code=status.HTTP_201_CREATED)
async def create_interest(
    payload: InterestCreateRequest,
    principal=Depends(get_human_principal),
    service=Depends(get_interest_service),
) -> InterestResponse:
    require_scopes(principal, {"interests:write"})
    try:
        interest = await service.create_interest(
            interest_id=payload.id,
            display_name=payload.display_name,
            parent_id=payload.parent_id,
            description=payload.description,
            keywords=payload.keywords,
            synonyms=payload.synonyms,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return InterestResponse(interest=InterestOut(**asdict(interest)))


@router.post("/seed", response_model=InterestSeedOut)
async def seed_interests(
    principal=Depends(get_human_principal),
    service=Depends(get_interest_service),
) -> InterestSeedOut:
    require_scopes(principal, {"interests:write"})
    try:
        result = await service.seed_root_interests()
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return InterestSeedOut(**result)


@router.post("/sync-counts", response_model=InterestSyncOut)
async def sync_interest_counts(
    principal=Depends(get_human_principal),
    service=Depends(get_interest_service),
) -> InterestSyncOut:
    require_scopes(principal, {"interests:write"})
    try:
        result = await service.sync_post_counts()
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return InterestSyncOut(**result)


@router.get("/{interest_id}", response_model=InterestResponse)
async def get_interest(
    interest_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_interest_service),
) -> InterestResponse:
    require_scopes(principal, {"interests:read"})
    try:
        interest = await service.get_interest(interest_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return InterestResponse(interest=InterestOut(**asdict(interest)))
