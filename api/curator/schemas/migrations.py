from typing import Any, Literal

from pydantic import Field

from curator.schemas.common import ApiModel, SuccessOut

MigrationStatusName = Literal["created", "running", "paused", "stopped", "completed", "failed", "rolled_back"]


class MigrationConfigIn(ApiModel):
    # Left loose so validate_migration reports malformed mappings itself.
    tag_mappings: Any = None
    batch_size: int | None = None
    limit: int | None = None
    update_all: bool = False
    dry_run: bool = False

    def to_config(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TagSuggestionOut(ApiModel):
    tag: str
    count: int
    examples: list[str] = Field(default_factory=list)
    suggested_interest: str
    confidence: float


class AnalysisMetadataOut(ApiModel):
    posts_analyzed: int
    timestamp: int
    exclude_existing: bool


class AnalyzeTagsOut(SuccessOut):
    total_tags: int
    suggestions: list[TagSuggestionOut] = Field(default_factory=list)
    analysis_metadata: AnalysisMetadataOut


class ValidationOut(ApiModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ValidationResultOut(SuccessOut, ValidationOut):
    pass


class MigrationCreatedOut(SuccessOut):
    migration_id: str
    validation: ValidationOut


class MigrationActionOut(SuccessOut):
    migration_id: str
    status: str
    message: str | None = None


class MigrationProgressOut(ApiModel):
    total: int = 0
    processed: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    percentage: int = 0


class MigrationJobOut(ApiModel):
    id: str
    status: MigrationStatusName
    type: Literal["migration", "rollback"] = "migration"
    config: dict[str, Any] = Field(default_factory=dict)
    progress: MigrationProgressOut = Field(default_factory=MigrationProgressOut)
    metadata: dict[str, Any] = Field(default_factory=dict)
    errors: list[dict[str, Any]] = Field(default_factory=list)
    validation: ValidationOut | None = None
    rollback_id: str | None = None
    original_migration_id: str | None = None


class MigrationStatusOut(SuccessOut):
    migration: MigrationJobOut


class MigrationListOut(SuccessOut):
    migrations: list[MigrationJobOut] = Field(default_factory=list)


class RecentMigrationOut(ApiModel):
    id: str
    status: str
    created_at: str | None = None
    progress: dict[str, Any] | None = None


class MigrationStatsOut(ApiModel):
    total: int
    by_status: dict[str, int] = Field(default_factory=dict)
    recent_activity: list[RecentMigrationOut] = Field(default_factory=list)
    total_posts_migrated: int = 0
    success_rate: int = 0


class MigrationStatsResponse(SuccessOut):
    stats: MigrationStatsOut


class RollbackOut(SuccessOut):
    rollback_id: str
    posts_rolled_back: int
    status: str


class CleanupOut(SuccessOut):
    deleted: int
