from fastapi import APIRouter, Depends, Query

from curator.api.errors import http_error, require_scopes
from curator.core.security import get_human_principal
from curator.schemas.moderation import (
    ContentEvaluationOut,
    ContentEvaluationRequest,
    ModerationActionOut,
    ModerationActionResponse,
    ModerationDecisionOut,
    ModerationHistoryOut,
    ModerationOverrideRequest,
    PostListOut,
    PostOut,
)
from curator.services.container import get_moderation_service
from curator.services.documents import RepositoryError

router = APIRouter()


@router.post("/posts/{post_id}/approve", response_model=ModerationActionResponse)
async def approve_post(
    post_id: str,
    payload: ModerationOverrideRequest | None = None,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ModerationActionResponse:
    require_scopes(principal, {"moderation:write"})
    payload = payload or ModerationOverrideRequest()
    try:
        action = await service.approve_post(post_id, principal.actor_id, reason=payload.reason, notes=payload.notes)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ModerationActionResponse(action=ModerationActionOut.model_validate(action))


@router.post("/posts/{post_id}/reject", response_model=ModerationActionResponse)
async def reject_post(
    post_id: str,
    payload: ModerationOverrideRequest | None = None,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ModerationActionResponse:
    require_scopes(principal, {"moderation:write"})
    payload = payload or ModerationOverrideRequest()
    try:
        action = await service.reject_post(post_id, principal.actor_id, reason=payload.reason, notes=payload.notes)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ModerationActionResponse(action=ModerationActionOut.model_validate(action))


@router.post("/posts/{post_id}/flag", response_model=ModerationActionResponse)
async def flag_post(
    post_id: str,
    payload: ModerationOverrideRequest | None = None,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ModerationActionResponse:
    require_scopes(principal, {"moderation:write"})
    payload = payload or ModerationOverrideRequest()
    try:
        action = await service.flag_post(post_id, principal.actor_id, reason=payload.reason, notes=payload.notes)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ModerationActionResponse(action=ModerationActionOut.model_validate(action))


@router.post("/posts/{post_id}/evaluate", response_model=ModerationDecisionOut)
async def evaluate_post(
    post_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ModerationDecisionOut:
    require_scopes(principal, {"moderation:write"})
    try:
        decision = await service.moderate_post(post_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ModerationDecisionOut(
        status=decision.status.value,
        reason=decision.reason,
        rule_name=decision.rule_name,
        metadata=decision.metadata,
        evaluated_rules=decision.evaluated_rules,
    )


@router.post("/evaluate-content", response_model=ContentEvaluationOut)
async def evaluate_content(
    payload: ContentEvaluationRequest,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ContentEvaluationOut:
    require_scopes(principal, {"moderation:read"})
    moderation_status = await service.evaluate_content(
        image_url=payload.image_url,
        caption=payload.caption,
        interest_ids=payload.interest_ids,
    )
    return ContentEvaluationOut(
        status=moderation_status.value,
        display_name=moderation_status.display_name,
        is_visible_to_users=moderation_status.is_visible_to_users,
    )


@router.get("/posts/{post_id}/history", response_model=ModerationHistoryOut)
async def moderation_history(
    post_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ModerationHistoryOut:
    require_scopes(principal, {"moderation:read"})
    try:
        rows = await service.get_moderation_history(post_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ModerationHistoryOut(actions=[ModerationActionOut.model_validate(row) for row in rows])


@router.get("/pending", response_model=PostListOut)
async def pending_posts(
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
    limit: int = Query(default=50, ge=1, le=200),
) -> PostListOut:
    require_scopes(principal, {"moderation:read"})
    try:
        posts = await service.get_pending_posts(limit)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return PostListOut(posts=[PostOut.model_validate(post.to_dict()) for post in posts])


@router.get("/flagged", response_model=PostListOut)
async def flagged_posts(
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
    limit: int = Query(default=50, ge=1, le=200),
) -> PostListOut:
    require_scopes(principal, {"moderation:read"})
    try:
        posts = await service.get_flagged_posts(limit)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return PostListOut(posts=[PostOut.model_validate(post.to_dict()) for post in posts])
