from typing import Any, Literal

from pydantic import Field

from curator.schemas.common import ApiModel, SuccessOut

ModerationStatusName = Literal["pending", "approved", "rejected", "flagged"]


class ModerationOverrideRequest(ApiModel):
    reason: str | None = None
    notes: str | None = None


class ModerationActionOut(ApiModel):
    id: str
    post_id: str
    moderator_user_id: str
    action: ModerationStatusName
    reason: str | None = None
    notes: str | None = None
    rule_name: str | None = None
    timestamp: str | None = None
    metadata: dict[str, str] | None = None


class ModerationActionResponse(SuccessOut):
    action: ModerationActionOut


class ModerationHistoryOut(SuccessOut):
    actions: list[ModerationActionOut] = Field(default_factory=list)


class ModerationDecisionOut(SuccessOut):
    status: ModerationStatusName
    reason: str | None = None
    rule_name: str | None = None
    metadata: dict[str, str] | None = None
    evaluated_rules: list[str] = Field(default_factory=list)


class ContentEvaluationRequest(ApiModel):
    image_url: str = Field(min_length=1)
    caption: str | None = None
    interest_ids: list[str] = Field(default_factory=list)


class ContentEvaluationOut(SuccessOut):
    status: ModerationStatusName
    display_name: str
    is_visible_to_users: bool


class PostOut(ApiModel):
    id: str
    user_id: str | None = None
    image_url: str | None = None
    caption: str | None = None
    tags: list[Any] = Field(default_factory=list)
    categories: list[Any] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    moderation_status: str | None = None
    created_at: str | None = None


class PostListOut(SuccessOut):
    posts: list[PostOut] = Field(default_factory=list)
