from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "curator-api"
    environment: str = "dev"
    store_backend: Literal["memory", "postgres"] = "memory"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    migration_default_batch_size: int = 100
    migration_batch_delay_seconds: float = 0.1
    migration_analysis_sample_size: int = 500
    migration_common_tag_threshold: int = 10
    migration_cleanup_default_days: int = 30
    moderation_default_status: Literal["pending", "approved", "rejected", "flagged"] = "approved"
    moderation_fallback_status: Literal["pending", "approved"] = "approved"
    moderation_rule_failure_policy: Literal["fail_safe", "skip"] = "fail_safe"
    moderation_blocked_terms: list[str] = []
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "curator-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: dict[str, str] | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CURATOR_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
