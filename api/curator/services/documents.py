from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

MAX_BATCH_WRITES = 500


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the document store is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class _Sentinel:
    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name


DELETE_FIELD = _Sentinel("DELETE_FIELD")
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")


@dataclass(frozen=True, slots=True)
class Increment:
    amount: int | float


@dataclass(slots=True)
class ArrayUnion:
    values: list[Any]


FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in", "array_contains"]
FILTER_OPS = {"==", "!=", "<", "<=", ">", ">=", "in", "array_contains"}


@dataclass(slots=True)
class FieldFilter:
    path: str
    op: FilterOp
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise RepositoryValidationError(f"unsupported filter operator: {self.op}")

    def matches(self, document: Mapping[str, Any]) -> bool:
        present, actual = lookup_field(document, self.path)
        if not present:
            return False
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "array_contains":
            return isinstance(actual, list) and self.value in actual
        if actual is None:
            return False
        try:
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            return actual >= self.value
        except TypeError:
            return False


WriteKind = Literal["set", "update", "delete"]


@dataclass(slots=True)
class WriteOperation:
    kind: WriteKind
    collection: str
    document_id: str
    data: dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Staged writes committed atomically by the owning store."""

    def __init__(self, max_size: int = MAX_BATCH_WRITES) -> None:
        self.max_size = max_size
        self._operations: list[WriteOperation] = []

    def __len__(self) -> int:
        return len(self._operations)

    @property
    def operations(self) -> list[WriteOperation]:
        return list(self._operations)

    def set(self, collection: str, document_id: str, data: Mapping[str, Any]) -> WriteBatch:
        return self._stage(WriteOperation("set", collection, document_id, dict(data)))

    def update(self, collection: str, document_id: str, updates: Mapping[str, Any]) -> WriteBatch:
        return self._stage(WriteOperation("update", collection, document_id, dict(updates)))

    def delete(self, collection: str, document_id: str) -> WriteBatch:
        return self._stage(WriteOperation("delete", collection, document_id))

    def _stage(self, operation: WriteOperation) -> WriteBatch:
        if len(self._operations) >= self.max_size:
            raise RepositoryValidationError(f"write batch exceeds {self.max_size} operations")
        self._operations.append(operation)
        return self


class DocumentStore(Protocol):
    max_batch_size: int

    async def get(self, collection: str, document_id: str) -> dict[str, Any] | None: ...

    async def set(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None: ...

    async def add(self, collection: str, data: Mapping[str, Any]) -> str: ...

    async def update(self, collection: str, document_id: str, updates: Mapping[str, Any]) -> None: ...

    async def delete(self, collection: str, document_id: str) -> None: ...

    async def query(
        self,
        collection: str,
        *,
        filters: list[FieldFilter] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    def batch(self) -> WriteBatch: ...

    async def commit(self, batch: WriteBatch) -> None: ...

    async def close(self) -> None: ...


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def lookup_field(document: Mapping[str, Any], path: str) -> tuple[bool, Any]:
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return False, None
        current = current[part]
    return True, current


def with_id(document_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
    snapshot = copy.deepcopy(dict(data))
    snapshot.setdefault("id", document_id)
    return snapshot


def resolve_sentinels(data: Mapping[str, Any], *, now: str) -> dict[str, Any]:
    """Materialize write sentinels for a full-document ``set``."""
    resolved: dict[str, Any] = {}
    for key, value in data.items():
        if value is DELETE_FIELD:
            continue
        resolved[key] = _resolve_value(None, value, now=now)
    return resolved


def apply_updates(document: Mapping[str, Any], updates: Mapping[str, Any], *, now: str) -> dict[str, Any]:
    """Apply dotted-path updates with Firestore-style sentinels to a copy of ``document``."""
    result = copy.deepcopy(dict(document))
    for path, value in updates.items():
        parts = path.split(".")
        parent: dict[str, Any] | None = result
        for part in parts[:-1]:
            child = parent.get(part)
            if not isinstance(child, dict):
                if value is DELETE_FIELD:
                    parent = None
                    break
                child = {}
                parent[part] = child
            parent = child
        if parent is None:
            continue

        leaf = parts[-1]
        if value is DELETE_FIELD:
            parent.pop(leaf, None)
            continue
        parent[leaf] = _resolve_value(parent.get(leaf), value, now=now)
    return result


def _resolve_value(current: Any, value: Any, *, now: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Increment):
        base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
        return base + value.amount
    if isinstance(value, ArrayUnion):
        merged = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in merged:
                merged.append(copy.deepcopy(item))
        return merged
    if isinstance(value, Mapping):
        return resolve_sentinels(value, now=now)
    if isinstance(value, list):
        return [_resolve_value(None, item, now=now) for item in value]
    return copy.deepcopy(value)
