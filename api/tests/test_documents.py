from __future__ import annotations

import asyncio

import pytest

from curator.services.documents import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayUnion,
    FieldFilter,
    Increment,
    RepositoryNotFoundError,
    RepositoryValidationError,
    WriteBatch,
    apply_updates,
    lookup_field,
)
from curator.services.store import InMemoryStore

NOW = "2024-05-01T00:00:00.000000+00:00"


def test_apply_updates_handles_dotted_paths_and_sentinels() -> None:
    document = {
        "status": "created",
        "progress": {"processed": 0, "migrated": 2},
        "errors": [{"message": "a"}],
        "migrationId": "m1",
    }

    updated = apply_updates(
        document,
        {
            "progress.processed": 10,
            "progress.migrated": Increment(3),
            "progress.failed": Increment(1),
            "metadata.lastBatch": SERVER_TIMESTAMP,
            "errors": ArrayUnion([{"message": "a"}, {"message": "b"}]),
            "migrationId": DELETE_FIELD,
        },
        now=NOW,
    )

    assert updated["progress"] == {"processed": 10, "migrated": 5, "failed": 1}
    assert updated["metadata"] == {"lastBatch": NOW}
    assert updated["errors"] == [{"message": "a"}, {"message": "b"}]
    assert "migrationId" not in updated
    # The source document is never mutated.
    assert document["progress"] == {"processed": 0, "migrated": 2}
    assert document["migrationId"] == "m1"


def test_delete_field_on_missing_parent_is_a_no_op() -> None:
    updated = apply_updates({"a": 1}, {"metadata.rolledBackAt": DELETE_FIELD}, now=NOW)
    assert updated == {"a": 1}


def test_lookup_field_distinguishes_missing_from_null() -> None:
    assert lookup_field({"a": {"b": None}}, "a.b") == (True, None)
    assert lookup_field({"a": {}}, "a.b") == (False, None)
    assert lookup_field({"a": 3}, "a.b") == (False, None)


def test_field_filter_rejects_unknown_operator() -> None:
    with pytest.raises(RepositoryValidationError):
        FieldFilter("status", "~=", "x")  # type: ignore[arg-type]


def test_write_batch_refuses_more_than_max_operations() -> None:
    batch = WriteBatch(max_size=2)
    batch.set("posts", "a", {}).delete("posts", "b")

    with pytest.raises(RepositoryValidationError):
        batch.update("posts", "c", {"x": 1})
    assert len(batch) == 2


def test_in_memory_commit_is_all_or_nothing() -> None:
    store = InMemoryStore(clock=lambda: NOW)
    store.seed("posts", [{"id": "p1", "interests": []}])

    async def scenario() -> None:
        batch = store.batch()
        batch.update("posts", "p1", {"interests": ["food"]})
        batch.update("posts", "missing", {"interests": ["food"]})
        with pytest.raises(RepositoryNotFoundError):
            await store.commit(batch)

        assert (await store.get("posts", "p1"))["interests"] == []

    asyncio.run(scenario())
    assert store.writes["posts"] == 0


def test_in_memory_query_filters_orders_and_limits() -> None:
    store = InMemoryStore(clock=lambda: NOW)
    store.seed(
        "posts",
        [
            {"id": "a", "moderationStatus": "pending", "createdAt": "2024-01-01", "interests": ["food"]},
            {"id": "b", "moderationStatus": "pending", "createdAt": "2024-01-03", "interests": ["travel"]},
            {"id": "c", "moderationStatus": "approved", "createdAt": "2024-01-02", "interests": ["food"]},
            {"id": "d", "moderationStatus": "pending"},
        ],
    )

    async def scenario() -> None:
        pending = await store.query(
            "posts",
            filters=[FieldFilter("moderationStatus", "==", "pending")],
            order_by="createdAt",
            descending=True,
        )
        # Documents without the ordering field are excluded, as in Firestore.
        assert [row["id"] for row in pending] == ["b", "a"]

        food = await store.query("posts", filters=[FieldFilter("interests", "array_contains", "food")])
        assert sorted(row["id"] for row in food) == ["a", "c"]

        recent = await store.query("posts", filters=[FieldFilter("createdAt", ">=", "2024-01-02")], limit=5)
        assert sorted(row["id"] for row in recent) == ["b", "c"]

        limited = await store.query("posts", order_by="createdAt", limit=1)
        assert [row["id"] for row in limited] == ["a"]

        in_status = await store.query("posts", filters=[FieldFilter("moderationStatus", "in", ["approved"])])
        assert [row["id"] for row in in_status] == ["c"]

    asyncio.run(scenario())


def test_in_memory_set_resolves_nested_server_timestamps() -> None:
    store = InMemoryStore(clock=lambda: NOW)

    async def scenario() -> dict:
        await store.set("migrations", "m1", {"metadata": {"createdAt": SERVER_TIMESTAMP, "startedAt": None}})
        return await store.get("migrations", "m1")

    document = asyncio.run(scenario())
    assert document == {"id": "m1", "metadata": {"createdAt": NOW, "startedAt": None}}
