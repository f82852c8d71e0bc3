from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

os.environ.setdefault("CURATOR_OTEL_ENABLED", "false")

from curator.core.config import Settings  # noqa: E402
from curator.services.container import ServiceContainer, build_container  # noqa: E402
from curator.services.store import InMemoryStore  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def ticking_clock(start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> Callable[[], str]:
    """Strictly increasing ISO timestamps, so ordering never depends on wall-clock resolution."""
    state = {"now": start}

    def _tick() -> str:
        state["now"] = state["now"] + step
        return state["now"].isoformat(timespec="microseconds")

    return _tick


def make_post(post_id: str, **fields: Any) -> dict[str, Any]:
    document: dict[str, Any] = {
        "id": post_id,
        "userId": "user-1",
        "imageUrl": f"https://cdn.example.com/{post_id}.jpg",
        "caption": None,
        "tags": [],
        "categories": [],
        "moderationStatus": "pending",
        "createdAt": "2024-01-01T00:00:00.000000+00:00",
    }
    document.update(fields)
    return document


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        migration_batch_delay_seconds=0,
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
        otel_enabled=False,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(clock=ticking_clock())


@pytest.fixture
def container(test_settings: Settings, store: InMemoryStore) -> Iterator[ServiceContainer]:
    yield build_container(test_settings, store=store)
