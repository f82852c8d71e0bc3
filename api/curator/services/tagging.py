from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from curator.services.interests import (
    DEFAULT_SUGGESTED_INTEREST,
    EXACT_MATCH_INTERESTS,
    INTEREST_KEYWORDS,
)
from curator.services.posts import needs_interest_migration

BASE_CONFIDENCE = 0.3
EXACT_MATCH_BONUS = 0.3
# (minimum count, bonus), checked top-down.
FREQUENCY_BONUSES = ((100, 0.4), (50, 0.3), (10, 0.2), (0, 0.1))
MAX_EXAMPLES = 3


@dataclass(slots=True)
class TagTally:
    count: int = 0
    examples: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TagSuggestion:
    tag: str
    count: int
    examples: list[str]
    suggested_interest: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "count": self.count,
            "examples": list(self.examples),
            "suggestedInterest": self.suggested_interest,
            "confidence": self.confidence,
        }


def normalize_tag(tag: Any) -> str:
    if not isinstance(tag, str):
        raise TypeError(f"tag must be a string, got {type(tag).__name__}")
    return tag.strip().lower()


def suggest_interest_for_tag(
    tag: str,
    keyword_table: Mapping[str, Iterable[str]] = INTEREST_KEYWORDS,
) -> str:
    tag_lower = tag.lower()
    for interest, keywords in keyword_table.items():
        if any(keyword in tag_lower or tag_lower in keyword for keyword in keywords):
            return interest
    return DEFAULT_SUGGESTED_INTEREST


def calculate_mapping_confidence(tag: str, count: int) -> float:
    confidence = BASE_CONFIDENCE
    for threshold, bonus in FREQUENCY_BONUSES:
        if count >= threshold:
            confidence += bonus
            break
    if tag.lower() in EXACT_MATCH_INTERESTS:
        confidence += EXACT_MATCH_BONUS
    return round(min(max(confidence, 0.0), 1.0), 2)


def tally_tags(posts: Iterable[Mapping[str, Any]], *, exclude_existing: bool) -> dict[str, TagTally]:
    tallies: dict[str, TagTally] = {}
    for post in posts:
        if exclude_existing and not needs_interest_migration(dict(post), update_all=False):
            continue
        raw_tags = [*_as_list(post.get("tags")), *_as_list(post.get("categories"))]
        for raw in raw_tags:
            if not isinstance(raw, str):
                continue
            tag = normalize_tag(raw)
            if len(tag) <= 1:
                continue
            tally = tallies.setdefault(tag, TagTally())
            tally.count += 1
            if raw not in tally.examples and len(tally.examples) < MAX_EXAMPLES:
                tally.examples.append(raw)
    return tallies


def build_suggestions(tallies: Mapping[str, TagTally]) -> list[TagSuggestion]:
    suggestions = [
        TagSuggestion(
            tag=tag,
            count=tally.count,
            examples=list(tally.examples),
            suggested_interest=suggest_interest_for_tag(tag),
            confidence=calculate_mapping_confidence(tag, tally.count),
        )
        for tag, tally in tallies.items()
    ]
    suggestions.sort(key=lambda row: (-row.count, row.tag))
    return suggestions


def normalize_tag_mappings(tag_mappings: Mapping[str, str]) -> dict[str, str]:
    return {normalize_tag(tag): interest for tag, interest in tag_mappings.items()}


def map_post_interests(post: Mapping[str, Any], tag_mappings: Mapping[str, str]) -> list[str]:
    """Return the distinct interests reached from a post's legacy tags, in first-seen order."""
    mapped: list[str] = []
    for raw in [*_as_list(post.get("tags")), *_as_list(post.get("categories"))]:
        interest = tag_mappings.get(normalize_tag(raw))
        if interest and interest not in mapped:
            mapped.append(interest)
    return mapped


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return []
