from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

POSTS_COLLECTION = "posts"


@dataclass(slots=True)
class Post:
    id: str
    user_id: str | None = None
    image_url: str | None = None
    caption: str | None = None
    tags: list[Any] = field(default_factory=list)
    categories: list[Any] = field(default_factory=list)
    interests: list[str] = field(default_factory=list)
    moderation_status: str | None = None
    created_at: str | None = None

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> Post:
        return cls(
            id=str(data.get("id") or ""),
            user_id=data.get("userId"),
            image_url=data.get("imageUrl"),
            caption=data.get("caption"),
            tags=_as_list(data.get("tags")),
            categories=_as_list(data.get("categories")),
            interests=[item for item in _as_list(data.get("interests")) if isinstance(item, str)],
            moderation_status=data.get("moderationStatus"),
            created_at=data.get("createdAt"),
        )

    def legacy_tags(self) -> list[Any]:
        return [*self.tags, *self.categories]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "imageUrl": self.image_url,
            "caption": self.caption,
            "tags": list(self.tags),
            "categories": list(self.categories),
            "interests": list(self.interests),
            "moderationStatus": self.moderation_status,
            "createdAt": self.created_at,
        }


def needs_interest_migration(data: dict[str, Any], *, update_all: bool) -> bool:
    if update_all:
        return True
    interests = data.get("interests")
    return not isinstance(interests, list) or len(interests) == 0


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return []
