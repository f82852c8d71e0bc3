from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]

from curator.core.config import get_settings
from curator.services.documents import (
    MAX_BATCH_WRITES,
    DocumentStore,
    FieldFilter,
    RepositoryConflictError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    WriteBatch,
    apply_updates,
    resolve_sentinels,
    utc_now_iso,
    with_id,
)
from curator.services.store import InMemoryStore

__all__ = [
    "DOCUMENTS_DDL",
    "PostgresRepository",
    "RepositoryConflictError",
    "RepositoryError",
    "RepositoryForbiddenError",
    "RepositoryNotFoundError",
    "RepositoryUnavailableError",
    "RepositoryValidationError",
    "get_repository",
]

DOCUMENTS_DDL = """
create table if not exists documents (
  collection text not null,
  id text not null,
  data jsonb not null,
  updated_at timestamptz not null default now(),
  primary key (collection, id)
);

create index if not exists documents_collection_idx on documents (collection);
create index if not exists documents_data_gin_idx on documents using gin (data jsonb_path_ops);
"""

_COMPARISON_OPS = {"<", "<=", ">", ">="}


class PostgresRepository:
    """Document store backed by a single jsonb table in Postgres."""

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        *,
        clock: Callable[[], str] = utc_now_iso,
        max_batch_size: int = MAX_BATCH_WRITES,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.max_batch_size = max_batch_size
        self._clock = clock
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            "select data from documents where collection = $1 and id = $2",
            collection,
            document_id,
        )
        if row is None:
            return None
        return with_id(document_id, self._decode(row["data"]))

    async def set(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        await self.commit(self.batch().set(collection, document_id, data))

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        document_id = uuid4().hex
        await self.set(collection, document_id, data)
        return document_id

    async def update(self, collection: str, document_id: str, updates: Mapping[str, Any]) -> None:
        await self.commit(self.batch().update(collection, document_id, updates))

    async def delete(self, collection: str, document_id: str) -> None:
        await self.commit(self.batch().delete(collection, document_id))

    async def query(
        self,
        collection: str,
        *,
        filters: list[FieldFilter] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        clauses = ["collection = $1"]
        params: list[Any] = [collection]

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        for item in filters or []:
            path = bind(item.path.split("."))
            target = f"data #> {path}::text[]"
            if item.op == "==":
                clauses.append(f"{target} = {bind(json.dumps(item.value))}::jsonb")
            elif item.op == "!=":
                clauses.append(f"{target} is not null and {target} <> {bind(json.dumps(item.value))}::jsonb")
            elif item.op == "in":
                values = [json.dumps(value) for value in item.value]
                clauses.append(f"{target} = any({bind(values)}::jsonb[])")
            elif item.op == "array_contains":
                clauses.append(f"{target} @> {bind(json.dumps([item.value]))}::jsonb")
            elif item.op in _COMPARISON_OPS:
                clauses.append(
                    f"{target} is not null and {target} <> 'null'::jsonb "
                    f"and {target} {item.op} {bind(json.dumps(item.value))}::jsonb"
                )

        order_sql = ""
        if order_by:
            order_path = bind(order_by.split("."))
            clauses.append(f"data #> {order_path}::text[] is not null")
            direction = "desc" if descending else "asc"
            order_sql = f" order by data #> {order_path}::text[] {direction}, id asc"

        limit_sql = ""
        if limit is not None:
            limit_sql = f" limit {bind(max(0, limit))}"

        pool = await self._get_pool()
        rows = await pool.fetch(
            f"select id, data from documents where {' and '.join(clauses)}{order_sql}{limit_sql}",
            *params,
        )
        return [with_id(row["id"], self._decode(row["data"])) for row in rows]

    def batch(self) -> WriteBatch:
        return WriteBatch(max_size=self.max_batch_size)

    async def commit(self, batch: WriteBatch) -> None:
        if not len(batch):
            return
        now = self._clock()
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for operation in batch.operations:
                    if operation.kind == "delete":
                        await conn.execute(
                            "delete from documents where collection = $1 and id = $2",
                            operation.collection,
                            operation.document_id,
                        )
                        continue

                    if operation.kind == "set":
                        data = resolve_sentinels(operation.data, now=now)
                    else:
                        row = await conn.fetchrow(
                            "select data from documents where collection = $1 and id = $2 for update",
                            operation.collection,
                            operation.document_id,
                        )
                        if row is None:
                            raise RepositoryNotFoundError(
                                f"document not found: {operation.collection}/{operation.document_id}"
                            )
                        data = apply_updates(self._decode(row["data"]), operation.data, now=now)

                    await conn.execute(
                        """
                        insert into documents (collection, id, data, updated_at)
                        values ($1, $2, $3::jsonb, now())
                        on conflict (collection, id)
                        do update set data = excluded.data, updated_at = now()
                        """,
                        operation.collection,
                        operation.document_id,
                        json.dumps(data),
                    )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("CURATOR_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

        try:
            async with pool.acquire() as conn:
                await conn.execute(DOCUMENTS_DDL)
        except Exception as exc:  # pragma: no cover - depends on environment
            await pool.close()
            raise RepositoryUnavailableError("could not prepare documents table") from exc
        self._pool = pool
        return self._pool

    @staticmethod
    def _decode(raw: Any) -> dict[str, Any]:
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                return {}
        if not isinstance(raw, dict):
            return {}
        return raw


@lru_cache
def get_repository() -> DocumentStore:
    settings = get_settings()
    if settings.store_backend == "postgres":
        return PostgresRepository(
            database_url=settings.database_url,
            min_pool_size=settings.database_pool_min_size,
            max_pool_size=settings.database_pool_max_size,
        )
    return InMemoryStore()
