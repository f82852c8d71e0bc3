from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from curator.services.documents import (
    SERVER_TIMESTAMP,
    DocumentStore,
    FieldFilter,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)
from curator.services.posts import POSTS_COLLECTION

logger = logging.getLogger(__name__)

INTERESTS_COLLECTION = "interests"

# Table order decides which interest wins when a tag matches several keyword lists.
INTEREST_KEYWORDS: dict[str, tuple[str, ...]] = {
    "fashion": (
        "fashion", "style", "clothing", "outfit", "dress", "shoes", "sneaker",
        "accessories", "model", "runway",
    ),
    "beauty": ("beauty", "makeup", "skincare", "cosmetics", "hair", "nails", "spa", "wellness"),
    "food": (
        "food", "recipe", "cooking", "baking", "cuisine", "restaurant", "meal", "dessert",
        "drink", "wine", "coffee",
    ),
    "fitness": (
        "fitness", "workout", "exercise", "gym", "health", "sport", "running", "yoga",
        "training", "muscle",
    ),
    "home": (
        "home", "interior", "design", "decor", "furniture", "architecture", "house",
        "apartment", "room", "garden",
    ),
    "travel": (
        "travel", "vacation", "trip", "destination", "landscape", "city", "beach",
        "mountain", "adventure", "explore",
    ),
    "photography": (
        "photography", "photo", "camera", "portrait", "nature", "abstract", "art",
        "vintage", "black", "white",
    ),
    "entertainment": (
        "entertainment", "movie", "music", "concert", "show", "celebrity", "art",
        "culture", "festival",
    ),
    "technology": ("technology", "tech", "gadget", "phone", "computer", "software", "digital", "innovation"),
    "pets": ("pet", "dog", "cat", "animal", "puppy", "kitten", "bird", "fish", "wildlife"),
}
VALID_INTERESTS: tuple[str, ...] = tuple(INTEREST_KEYWORDS)
EXACT_MATCH_INTERESTS = frozenset(
    {"fashion", "food", "travel", "fitness", "beauty", "home", "photography", "pets", "technology"}
)
DEFAULT_SUGGESTED_INTEREST = "photography"

_ROOT_DESCRIPTIONS = {
    "fashion": "Clothing, style, trends, and fashion inspiration",
    "beauty": "Makeup, skincare, hair, and self-care",
    "food": "Recipes, cooking, restaurants, and drinks",
    "fitness": "Workouts, sports, and healthy living",
    "home": "Interior design, decor, architecture, and gardens",
    "travel": "Destinations, landscapes, and adventures",
    "photography": "Photography techniques, inspiration, and visual art",
    "entertainment": "Movies, music, festivals, and culture",
    "technology": "Gadgets, software, and digital innovation",
    "pets": "Pets, animals, and wildlife",
}


@dataclass(slots=True)
class Interest:
    id: str
    name: str
    display_name: str
    level: int = 0
    path: list[str] = field(default_factory=list)
    parent_id: str | None = None
    description: str | None = None
    keywords: list[str] = field(default_factory=list)
    synonyms: list[str] = field(default_factory=list)
    post_count: int = 0
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> Interest:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            display_name=str(data.get("displayName") or data["id"]),
            level=int(data.get("level") or 0),
            path=list(data.get("path") or []),
            parent_id=data.get("parentId"),
            description=data.get("description"),
            keywords=list(data.get("keywords") or []),
            synonyms=list(data.get("synonyms") or []),
            post_count=int(data.get("postCount") or 0),
            is_active=bool(data.get("isActive", True)),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "level": self.level,
            "path": list(self.path),
            "parentId": self.parent_id,
            "description": self.description,
            "keywords": list(self.keywords),
            "synonyms": list(self.synonyms),
            "postCount": self.post_count,
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def validate_interest_node(interest: Interest, parent: Interest | None) -> list[str]:
    errors: list[str] = []
    if parent is None:
        if interest.parent_id is not None:
            errors.append(f"parent interest not found: {interest.parent_id}")
        elif interest.path != [interest.id]:
            errors.append("root interest path must contain only its own id")
    else:
        if interest.parent_id != parent.id:
            errors.append("parentId does not match parent interest")
        if interest.path != [*parent.path, interest.id]:
            errors.append("path must equal parent path followed by the interest id")
    if interest.level != len(interest.path) - 1:
        errors.append("level must equal path length minus one")
    return errors


def root_interests() -> list[Interest]:
    return [
        Interest(
            id=interest_id,
            name=interest_id,
            display_name=interest_id.capitalize(),
            level=0,
            path=[interest_id],
            description=_ROOT_DESCRIPTIONS.get(interest_id),
            keywords=list(keywords),
        )
        for interest_id, keywords in INTEREST_KEYWORDS.items()
    ]


class InterestService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def seed_root_interests(self) -> dict[str, int]:
        created = 0
        existing = 0
        for interest in root_interests():
            if await self.store.get(INTERESTS_COLLECTION, interest.id) is not None:
                existing += 1
                continue
            document = interest.to_document()
            document["createdAt"] = SERVER_TIMESTAMP
            document["updatedAt"] = SERVER_TIMESTAMP
            await self.store.set(INTERESTS_COLLECTION, interest.id, document)
            created += 1
        logger.info("seeded root interests created=%s existing=%s", created, existing)
        return {"created": created, "existing": existing}

    async def list_interests(self, *, level: int | None = None) -> list[Interest]:
        filters = [FieldFilter("level", "==", level)] if level is not None else None
        rows = await self.store.query(INTERESTS_COLLECTION, filters=filters, order_by="id")
        return [Interest.from_document(row) for row in rows]

    async def get_interest(self, interest_id: str) -> Interest:
        row = await self.store.get(INTERESTS_COLLECTION, interest_id)
        if row is None:
            raise RepositoryNotFoundError("interest not found")
        return Interest.from_document(row)

    async def create_interest(
        self,
        *,
        interest_id: str,
        display_name: str,
        parent_id: str | None = None,
        description: str | None = None,
        keywords: list[str] | None = None,
        synonyms: list[str] | None = None,
    ) -> Interest:
        interest_id = interest_id.strip().lower()
        if not interest_id:
            raise RepositoryValidationError("interest id is required")
        if await self.store.get(INTERESTS_COLLECTION, interest_id) is not None:
            raise RepositoryConflictError(f"interest already exists: {interest_id}")

        parent: Interest | None = None
        if parent_id is not None:
            try:
                parent = await self.get_interest(parent_id)
            except RepositoryNotFoundError as exc:
                raise RepositoryValidationError(f"parent interest not found: {parent_id}") from exc

        path = [*parent.path, interest_id] if parent else [interest_id]
        interest = Interest(
            id=interest_id,
            name=interest_id,
            display_name=display_name,
            level=len(path) - 1,
            path=path,
            parent_id=parent.id if parent else None,
            description=description,
            keywords=[keyword.lower() for keyword in keywords or []],
            synonyms=list(synonyms or []),
        )
        errors = validate_interest_node(interest, parent)
        if errors:
            raise RepositoryValidationError("; ".join(errors))

        document = interest.to_document()
        document["createdAt"] = SERVER_TIMESTAMP
        document["updatedAt"] = SERVER_TIMESTAMP
        await self.store.set(INTERESTS_COLLECTION, interest_id, document)
        logger.info("created interest id=%s level=%s", interest_id, interest.level)
        return await self.get_interest(interest_id)

    async def sync_post_counts(self) -> dict[str, int]:
        updated = 0
        unchanged = 0
        for interest in await self.list_interests():
            posts = await self.store.query(
                POSTS_COLLECTION,
                filters=[FieldFilter("interests", "array_contains", interest.id)],
            )
            actual = len(posts)
            if actual == interest.post_count:
                unchanged += 1
                continue
            await self.store.update(
                INTERESTS_COLLECTION,
                interest.id,
                {"postCount": actual, "updatedAt": SERVER_TIMESTAMP},
            )
            logger.info("synced post count interest=%s old=%s new=%s", interest.id, interest.post_count, actual)
            updated += 1
        return {"updated": updated, "unchanged": unchanged}
