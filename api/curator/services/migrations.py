from __future__ import annotations

import asyncio
import logging
import math
import secrets
import string
import time
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from opentelemetry import trace

from curator.services.documents import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentStore,
    FieldFilter,
    Increment,
    RepositoryConflictError,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    WriteBatch,
)
from curator.services.interests import VALID_INTERESTS
from curator.services.posts import POSTS_COLLECTION, needs_interest_migration
from curator.services.tagging import (
    build_suggestions,
    map_post_interests,
    normalize_tag_mappings,
    tally_tags,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MIGRATIONS_COLLECTION = "migrations"
RECOMMENDED_BATCH_SIZE = (10, 500)
MAX_UNMAPPED_WARNINGS = 5
STATS_SAMPLE_SIZE = 100
_ID_ALPHABET = string.digits + string.ascii_lowercase


class MigrationStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


STARTABLE_STATUSES = {MigrationStatus.CREATED.value, MigrationStatus.PAUSED.value}
STOPPABLE_STATUSES = {MigrationStatus.RUNNING.value, MigrationStatus.PAUSED.value}
TERMINAL_STATUSES = (
    MigrationStatus.COMPLETED.value,
    MigrationStatus.FAILED.value,
    MigrationStatus.STOPPED.value,
    MigrationStatus.ROLLED_BACK.value,
)


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


class CancellationToken:
    """Cooperative pause/stop requests observed by a batch loop at slice boundaries."""

    def __init__(self) -> None:
        self._stop = asyncio.Event()
        self._pause = asyncio.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    @property
    def pause_requested(self) -> bool:
        return self._pause.is_set()

    def request_stop(self) -> None:
        self._stop.set()

    def request_pause(self) -> None:
        self._pause.set()


@dataclass(slots=True)
class MigrationHandle:
    job_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task[None] | None = None

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def pause(self) -> None:
        self.token.request_pause()

    def stop(self) -> None:
        self.token.request_stop()

    async def wait(self) -> None:
        if self.task is not None:
            await self.task

    def to_dict(self) -> dict[str, Any]:
        return {"status": "started", "migrationId": self.job_id}


@dataclass(slots=True)
class BatchOutcome:
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


def progress_percentage(processed: int, total: int) -> int:
    if total <= 0:
        return 0
    return math.floor(processed / total * 100 + 0.5)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MigrationService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        default_batch_size: int = 100,
        batch_delay_seconds: float = 0.1,
        analysis_sample_size: int = 500,
        common_tag_threshold: int = 10,
        clock_ms: Callable[[], int] = _epoch_ms,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.default_batch_size = max(1, default_batch_size)
        self.batch_delay_seconds = max(0.0, batch_delay_seconds)
        self.analysis_sample_size = analysis_sample_size
        self.common_tag_threshold = common_tag_threshold
        self._clock_ms = clock_ms
        self._clock = clock
        self._handles: dict[str, MigrationHandle] = {}
        self._rollbacks_in_flight: set[str] = set()
        self._transition_lock = asyncio.Lock()

    def get_handle(self, job_id: str) -> MigrationHandle | None:
        return self._handles.get(job_id)

    async def analyze_tags_for_mappings(self, *, limit: int = 1000, exclude_existing: bool = True) -> dict[str, Any]:
        posts = await self.store.query(POSTS_COLLECTION, limit=limit if limit > 0 else None)
        tallies = tally_tags(posts, exclude_existing=exclude_existing)
        suggestions = build_suggestions(tallies)
        logger.info("tag analysis posts=%s distinct_tags=%s", len(posts), len(tallies))
        return {
            "totalTags": len(tallies),
            "suggestions": [suggestion.to_dict() for suggestion in suggestions],
            "analysisMetadata": {
                "postsAnalyzed": len(posts),
                "timestamp": self._clock_ms(),
                "excludeExisting": exclude_existing,
            },
        }

    async def validate_migration(self, config: Mapping[str, Any]) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        tag_mappings = config.get("tagMappings")
        if not isinstance(tag_mappings, Mapping):
            errors.append("tagMappings is required and must be an object")
            return ValidationResult(valid=False, errors=errors, warnings=warnings)

        for tag, interest in tag_mappings.items():
            if interest not in VALID_INTERESTS:
                errors.append(
                    f'Invalid interest "{interest}" for tag "{tag}". '
                    f"Valid interests: {', '.join(VALID_INTERESTS)}"
                )
        if not tag_mappings:
            warnings.append("tagMappings is empty; every post will be skipped")

        batch_size = config.get("batchSize")
        if batch_size is not None:
            if not _is_int(batch_size) or batch_size < 1:
                errors.append("batchSize must be a positive integer")
            elif not RECOMMENDED_BATCH_SIZE[0] <= batch_size <= RECOMMENDED_BATCH_SIZE[1]:
                warnings.append("Batch size should be between 10 and 500 for optimal performance")

        limit = config.get("limit")
        if limit is not None and (not _is_int(limit) or limit < 0):
            errors.append("limit must be a non-negative integer")

        for flag in ("updateAll", "dryRun"):
            if config.get(flag) is not None and not isinstance(config.get(flag), bool):
                errors.append(f"{flag} must be a boolean")

        try:
            analysis = await self.analyze_tags_for_mappings(limit=self.analysis_sample_size)
        except RepositoryError:
            logger.warning("tag analysis unavailable during validation", exc_info=True)
            warnings.append("Could not analyze existing tags for validation")
        else:
            mapped = {str(tag).strip().lower() for tag in tag_mappings}
            unmapped = [
                row["tag"]
                for row in analysis["suggestions"]
                if row["count"] >= self.common_tag_threshold and row["tag"] not in mapped
            ][:MAX_UNMAPPED_WARNINGS]
            if unmapped:
                warnings.append(f"Common tags without mappings: {', '.join(unmapped)}")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    async def create_migration_job(self, config: Mapping[str, Any], user_id: str) -> dict[str, Any]:
        validation = await self.validate_migration(config)
        if not validation.valid:
            raise RepositoryValidationError(f"Invalid migration config: {', '.join(validation.errors)}")

        migration_id = self._new_migration_id()
        document = {
            "id": migration_id,
            "status": MigrationStatus.CREATED.value,
            "config": {
                "tagMappings": normalize_tag_mappings(config["tagMappings"]),
                "batchSize": config.get("batchSize") or self.default_batch_size,
                "limit": config.get("limit") or None,
                "updateAll": bool(config.get("updateAll", False)),
                "dryRun": bool(config.get("dryRun", False)),
            },
            "progress": {
                "total": 0,
                "processed": 0,
                "migrated": 0,
                "skipped": 0,
                "failed": 0,
                "percentage": 0,
            },
            "metadata": {
                "createdBy": user_id,
                "createdAt": SERVER_TIMESTAMP,
                "startedAt": None,
                "completedAt": None,
                "lastBatch": None,
            },
            "errors": [],
            "validation": validation.to_dict(),
        }
        await self.store.set(MIGRATIONS_COLLECTION, migration_id, document)
        logger.info("migration created id=%s by=%s dry_run=%s", migration_id, user_id, document["config"]["dryRun"])
        return {"migrationId": migration_id, "validation": validation.to_dict()}

    async def start_migration(self, job_id: str) -> MigrationHandle:
        async with self._transition_lock:
            job = await self._get_job(job_id)
            status = job.get("status")
            if job.get("type") == "rollback" or status not in STARTABLE_STATUSES or job_id in self._handles:
                raise RepositoryConflictError(f"Cannot start migration with status: {status}")

            updates: dict[str, Any] = {"status": MigrationStatus.RUNNING.value}
            if status == MigrationStatus.PAUSED.value:
                updates["metadata.resumedAt"] = SERVER_TIMESTAMP
            else:
                updates["metadata.startedAt"] = SERVER_TIMESTAMP
            await self.store.update(MIGRATIONS_COLLECTION, job_id, updates)

            handle = MigrationHandle(job_id=job_id)
            self._handles[job_id] = handle
            handle.task = asyncio.create_task(self._run(handle), name=f"migration:{job_id}")

        logger.info("migration started id=%s resumed=%s", job_id, status == MigrationStatus.PAUSED.value)
        return handle

    async def start_dry_run(self, config: Mapping[str, Any], user_id: str) -> dict[str, Any]:
        created = await self.create_migration_job({**config, "dryRun": True}, user_id)
        handle = await self.start_migration(created["migrationId"])
        return {"migrationId": handle.job_id, "message": "Dry run started successfully"}

    async def pause_migration(self, job_id: str) -> dict[str, Any]:
        job = await self._get_job(job_id)
        handle = self._handles.get(job_id)
        if handle is None:
            raise RepositoryConflictError(f"Cannot pause migration with status: {job.get('status')}")
        handle.pause()
        logger.info("migration pause requested id=%s", job_id)
        return {"status": "pause_requested", "migrationId": job_id}

    async def stop_migration(self, job_id: str) -> dict[str, Any]:
        job = await self._get_job(job_id)
        handle = self._handles.get(job_id)
        if handle is None and job.get("status") not in STOPPABLE_STATUSES:
            raise RepositoryConflictError(f"Cannot stop migration with status: {job.get('status')}")
        if handle is not None:
            handle.stop()

        # Persisted immediately in case no loop is active for this id.
        await self.store.update(
            MIGRATIONS_COLLECTION,
            job_id,
            {"status": MigrationStatus.STOPPED.value, "metadata.completedAt": SERVER_TIMESTAMP},
        )
        logger.info("migration stopped id=%s active=%s", job_id, handle is not None)
        return {"status": "stopped", "migrationId": job_id}

    async def get_migration_status(self, job_id: str) -> dict[str, Any]:
        return await self._get_job(job_id)

    async def list_migrations(
        self,
        *,
        limit: int = 20,
        status: str | None = None,
        user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        filters: list[FieldFilter] = []
        if status:
            filters.append(FieldFilter("status", "==", status))
        if user_id:
            filters.append(FieldFilter("metadata.createdBy", "==", user_id))
        return await self.store.query(
            MIGRATIONS_COLLECTION,
            filters=filters,
            order_by="metadata.createdAt",
            descending=True,
            limit=limit,
        )

    async def get_migration_stats(self) -> dict[str, Any]:
        migrations = await self.list_migrations(limit=STATS_SAMPLE_SIZE)
        by_status = Counter(str(row.get("status")) for row in migrations)
        completed = [row for row in migrations if row.get("status") == MigrationStatus.COMPLETED.value]
        total_migrated = sum(int((row.get("progress") or {}).get("migrated") or 0) for row in completed)
        return {
            "total": len(migrations),
            "byStatus": dict(by_status),
            "recentActivity": [
                {
                    "id": row.get("id"),
                    "status": row.get("status"),
                    "createdAt": (row.get("metadata") or {}).get("createdAt"),
                    "progress": row.get("progress"),
                }
                for row in migrations[:5]
            ],
            "totalPostsMigrated": total_migrated,
            "successRate": round(len(completed) / len(migrations) * 100) if migrations else 0,
        }

    async def rollback_migration(self, job_id: str) -> dict[str, Any]:
        if job_id in self._rollbacks_in_flight:
            raise RepositoryConflictError("Rollback already in progress")

        job = await self._get_job(job_id)
        status = job.get("status")
        if job.get("type") == "rollback":
            raise RepositoryConflictError("Cannot roll back a rollback job")
        if (job.get("config") or {}).get("dryRun"):
            raise RepositoryConflictError("Cannot rollback a dry run migration")
        if status == MigrationStatus.RUNNING.value or job_id in self._handles:
            raise RepositoryConflictError("Cannot rollback a running migration")
        if status != MigrationStatus.COMPLETED.value:
            raise RepositoryConflictError(f"Cannot rollback migration with status: {status}")

        self._rollbacks_in_flight.add(job_id)
        try:
            return await self._rollback(job_id)
        finally:
            self._rollbacks_in_flight.discard(job_id)

    async def cleanup_old_migrations(self, days_old: int = 30) -> dict[str, int]:
        cutoff = (self._clock() - timedelta(days=days_old)).isoformat(timespec="microseconds")
        rows = await self.store.query(
            MIGRATIONS_COLLECTION,
            filters=[
                FieldFilter("metadata.createdAt", "<", cutoff),
                FieldFilter("status", "in", list(TERMINAL_STATUSES)),
            ],
        )
        for start in range(0, len(rows), self.store.max_batch_size):
            batch = self.store.batch()
            for row in rows[start : start + self.store.max_batch_size]:
                batch.delete(MIGRATIONS_COLLECTION, row["id"])
            await self.store.commit(batch)
        logger.info("migration cleanup days_old=%s deleted=%s", days_old, len(rows))
        return {"deleted": len(rows)}

    async def shutdown(self, timeout_seconds: float = 10.0) -> None:
        handles = list(self._handles.values())
        for handle in handles:
            handle.pause()
        tasks = [handle.task for handle in handles if handle.task is not None]
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, handle: MigrationHandle) -> None:
        job_id = handle.job_id
        try:
            with tracer.start_as_current_span("migration.run") as span:
                span.set_attribute("migration.id", job_id)
                await self._process_migration(job_id, handle.token)
        except asyncio.CancelledError:
            # Torn down mid-run: leave the job resumable unless a stop already landed.
            if not handle.token.stop_requested:
                logger.warning("migration cancelled id=%s; marking paused", job_id)
                try:
                    await self.store.update(MIGRATIONS_COLLECTION, job_id, {"status": MigrationStatus.PAUSED.value})
                except RepositoryError:
                    logger.exception("could not record migration pause id=%s", job_id)
            raise
        except Exception as exc:
            logger.exception("migration failed id=%s", job_id)
            try:
                await self.store.update(
                    MIGRATIONS_COLLECTION,
                    job_id,
                    {
                        "status": MigrationStatus.FAILED.value,
                        "metadata.completedAt": SERVER_TIMESTAMP,
                        "errors": ArrayUnion(
                            [{"message": str(exc), "timestamp": self._clock_ms(), "type": "system_error"}]
                        ),
                    },
                )
            except RepositoryError:
                logger.exception("could not record migration failure id=%s", job_id)
        finally:
            self._handles.pop(job_id, None)

    async def _process_migration(self, job_id: str, token: CancellationToken) -> None:
        job = await self._get_job(job_id)
        config = job["config"]
        tag_mappings = normalize_tag_mappings(config.get("tagMappings") or {})
        batch_size = max(1, int(config.get("batchSize") or self.default_batch_size))
        dry_run = bool(config.get("dryRun"))
        limit = config.get("limit")

        posts = await self.store.query(POSTS_COLLECTION, limit=limit if limit and limit > 0 else None)
        candidates = [
            post for post in posts if needs_interest_migration(post, update_all=bool(config.get("updateAll")))
        ]

        # A resumed run re-scans from the start; counters from earlier runs are kept.
        already_processed = int((job.get("progress") or {}).get("processed") or 0)
        total = already_processed + len(candidates)
        await self.store.update(
            MIGRATIONS_COLLECTION,
            job_id,
            {"progress.total": total, "progress.percentage": progress_percentage(already_processed, total)},
        )
        logger.info("migration scanning id=%s candidates=%s total=%s", job_id, len(candidates), total)

        for start in range(0, len(candidates), batch_size):
            if token.stop_requested:
                await self.store.update(
                    MIGRATIONS_COLLECTION,
                    job_id,
                    {"status": MigrationStatus.STOPPED.value, "metadata.completedAt": SERVER_TIMESTAMP},
                )
                logger.info("migration stopped at boundary id=%s offset=%s", job_id, start)
                return
            if token.pause_requested:
                await self.store.update(MIGRATIONS_COLLECTION, job_id, {"status": MigrationStatus.PAUSED.value})
                logger.info("migration paused at boundary id=%s offset=%s", job_id, start)
                return

            chunk = candidates[start : start + batch_size]
            with tracer.start_as_current_span("migration.batch") as span:
                span.set_attribute("migration.id", job_id)
                span.set_attribute("migration.batch_offset", start)
                outcome = await self._process_batch(job_id, chunk, tag_mappings, dry_run=dry_run)

            processed = already_processed + start + len(chunk)
            updates: dict[str, Any] = {
                "progress.processed": processed,
                "progress.percentage": progress_percentage(processed, total),
                "progress.migrated": Increment(outcome.migrated),
                "progress.skipped": Increment(outcome.skipped),
                "progress.failed": Increment(outcome.failed),
                "metadata.lastBatch": SERVER_TIMESTAMP,
            }
            if outcome.errors:
                updates["errors"] = ArrayUnion(outcome.errors)
            await self.store.update(MIGRATIONS_COLLECTION, job_id, updates)

            await asyncio.sleep(self.batch_delay_seconds)

        job = await self._get_job(job_id)
        if job.get("status") == MigrationStatus.RUNNING.value:
            await self.store.update(
                MIGRATIONS_COLLECTION,
                job_id,
                {"status": MigrationStatus.COMPLETED.value, "metadata.completedAt": SERVER_TIMESTAMP},
            )
            logger.info("migration completed id=%s", job_id)

    async def _process_batch(
        self,
        job_id: str,
        posts: list[dict[str, Any]],
        tag_mappings: Mapping[str, str],
        *,
        dry_run: bool,
    ) -> BatchOutcome:
        outcome = BatchOutcome()
        pending: list[WriteBatch] = [self.store.batch()]

        for post in posts:
            try:
                interests = map_post_interests(post, tag_mappings)
            except Exception as exc:
                outcome.failed += 1
                outcome.errors.append(
                    {
                        "postId": post.get("id"),
                        "message": str(exc),
                        "timestamp": self._clock_ms(),
                        "type": "processing_error",
                    }
                )
                continue

            if not interests:
                outcome.skipped += 1
                continue
            outcome.migrated += 1
            if dry_run:
                continue

            if len(pending[-1]) >= self.store.max_batch_size:
                pending.append(self.store.batch())
            pending[-1].update(
                POSTS_COLLECTION,
                post["id"],
                {
                    "interests": interests,
                    "updatedAt": SERVER_TIMESTAMP,
                    "migratedAt": SERVER_TIMESTAMP,
                    "migrationId": job_id,
                },
            )

        if not dry_run:
            for batch in pending:
                if len(batch):
                    await self.store.commit(batch)
        return outcome

    async def _rollback(self, job_id: str) -> dict[str, Any]:
        posts = await self.store.query(POSTS_COLLECTION, filters=[FieldFilter("migrationId", "==", job_id)])
        if not posts:
            raise RepositoryNotFoundError("No posts found to rollback")

        rollback_id = f"rollback_{job_id}_{self._clock_ms()}"
        await self.store.set(
            MIGRATIONS_COLLECTION,
            rollback_id,
            {
                "id": rollback_id,
                "type": "rollback",
                "originalMigrationId": job_id,
                "status": MigrationStatus.RUNNING.value,
                "progress": {"total": len(posts), "processed": 0},
                "metadata": {"createdAt": SERVER_TIMESTAMP, "startedAt": SERVER_TIMESTAMP, "completedAt": None},
                "errors": [],
            },
        )
        logger.info("rollback started id=%s migration=%s posts=%s", rollback_id, job_id, len(posts))

        processed = 0
        try:
            for start in range(0, len(posts), self.store.max_batch_size):
                chunk = posts[start : start + self.store.max_batch_size]
                batch = self.store.batch()
                for post in chunk:
                    batch.update(
                        POSTS_COLLECTION,
                        post["id"],
                        {
                            "interests": DELETE_FIELD,
                            "migratedAt": DELETE_FIELD,
                            "migrationId": DELETE_FIELD,
                            "updatedAt": SERVER_TIMESTAMP,
                            "rolledBackAt": SERVER_TIMESTAMP,
                            "rolledBackBy": rollback_id,
                        },
                    )
                await self.store.commit(batch)
                processed += len(chunk)
                await self.store.update(MIGRATIONS_COLLECTION, rollback_id, {"progress.processed": processed})
        except RepositoryError as exc:
            await self.store.update(
                MIGRATIONS_COLLECTION,
                rollback_id,
                {
                    "status": MigrationStatus.FAILED.value,
                    "metadata.completedAt": SERVER_TIMESTAMP,
                    "errors": ArrayUnion(
                        [{"message": str(exc), "timestamp": self._clock_ms(), "type": "system_error"}]
                    ),
                },
            )
            raise

        await self.store.update(
            MIGRATIONS_COLLECTION,
            rollback_id,
            {
                "status": MigrationStatus.COMPLETED.value,
                "progress.processed": processed,
                "metadata.completedAt": SERVER_TIMESTAMP,
            },
        )
        await self.store.update(
            MIGRATIONS_COLLECTION,
            job_id,
            {
                "status": MigrationStatus.ROLLED_BACK.value,
                "rollbackId": rollback_id,
                "metadata.rolledBackAt": SERVER_TIMESTAMP,
            },
        )
        logger.info("rollback completed id=%s migration=%s posts=%s", rollback_id, job_id, processed)
        return {"rollbackId": rollback_id, "postsRolledBack": processed, "status": "completed"}

    async def _get_job(self, job_id: str) -> dict[str, Any]:
        job = await self.store.get(MIGRATIONS_COLLECTION, job_id)
        if job is None:
            raise RepositoryNotFoundError("Migration not found")
        return job

    def _new_migration_id(self) -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
        return f"migration_{self._clock_ms()}_{suffix}"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
