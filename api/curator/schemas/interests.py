from pydantic import Field

from curator.schemas.common import ApiModel, SuccessOut


class InterestOut(ApiModel):
    id: str
    name: str
    display_name: str
    level: int
    path: list[str] = Field(default_factory=list)
    parent_id: str | None = None
    description: str | None = None
    keywords: list[str] = Field(default_factory=list)
    synonyms: list[str] = Field(default_factory=list)
    post_count: int = 0
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


class InterestCreateRequest(ApiModel):
    id: str = Field(min_length=1, max_length=64)
    display_name: str = Field(min_length=1)
    parent_id: str | None = None
    description: str | None = None
    keywords: list[str] = Field(default_factory=list)
    synonyms: list[str] = Field(default_factory=list)


class InterestResponse(SuccessOut):
    interest: InterestOut


class InterestListOut(SuccessOut):
    interests: list[InterestOut] = Field(default_factory=list)


class InterestSeedOut(SuccessOut):
    created: int
    existing: int


class InterestSyncOut(SuccessOut):
    updated: int
    unchanged: int
