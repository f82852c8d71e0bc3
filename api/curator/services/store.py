from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Mapping
from typing import Any
from uuid import uuid4

from curator.services.documents import (
    MAX_BATCH_WRITES,
    FieldFilter,
    RepositoryNotFoundError,
    WriteBatch,
    apply_updates,
    lookup_field,
    resolve_sentinels,
    utc_now_iso,
    with_id,
)


class InMemoryStore:
    """Process-local document store used for development and tests."""

    def __init__(self, *, clock: Callable[[], str] = utc_now_iso, max_batch_size: int = MAX_BATCH_WRITES) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.max_batch_size = max_batch_size
        self.writes: Counter[str] = Counter()
        self.commits: Counter[str] = Counter()
        self._clock = clock

    def seed(self, collection: str, documents: list[dict[str, Any]]) -> None:
        bucket = self.collections.setdefault(collection, {})
        for document in documents:
            document_id = str(document.get("id") or uuid4().hex)
            bucket[document_id] = dict(document)

    async def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        data = self.collections.get(collection, {}).get(document_id)
        if data is None:
            return None
        return with_id(document_id, data)

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
        rows = [
            with_id(document_id, data)
            for document_id, data in self.collections.get(collection, {}).items()
            if all(item.matches(data) for item in filters or [])
        ]
        if order_by:
            rows = [row for row in rows if lookup_field(row, order_by)[1] is not None]
            rows.sort(key=lambda row: lookup_field(row, order_by)[1], reverse=descending)
        if limit is not None:
            rows = rows[: max(0, limit)]
        return rows

    def batch(self) -> WriteBatch:
        return WriteBatch(max_size=self.max_batch_size)

    async def commit(self, batch: WriteBatch) -> None:
        now = self._clock()
        staged = {name: dict(bucket) for name, bucket in self.collections.items()}

        for operation in batch.operations:
            bucket = staged.setdefault(operation.collection, {})
            if operation.kind == "set":
                bucket[operation.document_id] = resolve_sentinels(operation.data, now=now)
            elif operation.kind == "update":
                current = bucket.get(operation.document_id)
                if current is None:
                    raise RepositoryNotFoundError(
                        f"document not found: {operation.collection}/{operation.document_id}"
                    )
                bucket[operation.document_id] = apply_updates(current, operation.data, now=now)
            else:
                bucket.pop(operation.document_id, None)

        self.collections = staged
        for operation in batch.operations:
            self.writes[operation.collection] += 1
        for name in {operation.collection for operation in batch.operations}:
            self.commits[name] += 1

    async def close(self) -> None:
        return None
