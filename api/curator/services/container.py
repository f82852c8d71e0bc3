from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends

from curator.core.config import Settings, get_settings
from curator.services.documents import DocumentStore
from curator.services.interests import InterestService
from curator.services.migrations import MigrationService
from curator.services.moderation import (
    BlockedTermsRule,
    ManualModerationRule,
    ModerationService,
    ModerationStatus,
)
from curator.services.repository import get_repository


@dataclass(slots=True)
class ServiceContainer:
    store: DocumentStore
    moderation: ModerationService
    migrations: MigrationService
    interests: InterestService

    async def close(self) -> None:
        await self.migrations.shutdown()
        await self.store.close()


def build_container(settings: Settings, store: DocumentStore | None = None) -> ServiceContainer:
    store = store if store is not None else get_repository()

    moderation = ModerationService(
        store,
        default_status=ModerationStatus(settings.moderation_default_status),
        failure_policy=settings.moderation_rule_failure_policy,
    )
    if settings.moderation_blocked_terms:
        moderation.register_rule(BlockedTermsRule(settings.moderation_blocked_terms))
    moderation.register_rule(ManualModerationRule(default_status=ModerationStatus(settings.moderation_fallback_status)))

    migrations = MigrationService(
        store,
        default_batch_size=settings.migration_default_batch_size,
        batch_delay_seconds=settings.migration_batch_delay_seconds,
        analysis_sample_size=settings.migration_analysis_sample_size,
        common_tag_threshold=settings.migration_common_tag_threshold,
    )
    return ServiceContainer(
        store=store,
        moderation=moderation,
        migrations=migrations,
        interests=InterestService(store),
    )


@lru_cache
def get_container() -> ServiceContainer:
    return build_container(get_settings())


def get_moderation_service(container: ServiceContainer = Depends(get_container)) -> ModerationService:
    return container.moderation


def get_migration_service(container: ServiceContainer = Depends(get_container)) -> MigrationService:
    return container.migrations


def get_interest_service(container: ServiceContainer = Depends(get_container)) -> InterestService:
    return container.interests
