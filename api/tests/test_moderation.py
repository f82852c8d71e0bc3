from __future__ import annotations

import asyncio

import pytest
from conftest import make_post

from curator.services.documents import RepositoryConflictError, RepositoryError, RepositoryNotFoundError
from curator.services.moderation import (
    ACTIONS_COLLECTION,
    MANUAL_REVIEW_RULE,
    BlockedTermsRule,
    ManualModerationRule,
    ModerationResult,
    ModerationService,
    ModerationStatus,
)
from curator.services.posts import Post
from curator.services.store import InMemoryStore


class StaticRule:
    def __init__(self, name: str, priority: int, status: ModerationStatus, *, halt: bool = False) -> None:
        self.name = name
        self.priority = priority
        self.status = status
        self.halt = halt
        self.calls = 0

    async def evaluate(self, post: Post) -> ModerationResult:
        self.calls += 1
        return ModerationResult(status=self.status, reason=self.name, should_continue_evaluation=not self.halt)


class ExplodingRule:
    name = "Exploding"
    priority = 80

    async def evaluate(self, post: Post) -> ModerationResult:
        raise RuntimeError("classifier timeout")


def _post(post_id: str = "p1", **fields) -> Post:
    return Post.from_document(make_post(post_id, **fields))


def test_higher_priority_halting_rule_wins() -> None:
    service = ModerationService(InMemoryStore())
    flagger = StaticRule("flagger", 100, ModerationStatus.FLAGGED, halt=True)
    approver = StaticRule("approver", 50, ModerationStatus.APPROVED)
    service.register_rule(approver)
    service.register_rule(flagger)

    assert asyncio.run(service.evaluate_post(_post())) is ModerationStatus.FLAGGED
    assert approver.calls == 0


def test_empty_registry_returns_default_status() -> None:
    service = ModerationService(InMemoryStore(), default_status=ModerationStatus.PENDING)
    assert asyncio.run(service.evaluate_post(_post())) is ModerationStatus.PENDING


def test_last_evaluated_rule_decides_when_none_halt() -> None:
    service = ModerationService(InMemoryStore())
    service.register_rule(StaticRule("first", 10, ModerationStatus.FLAGGED))
    service.register_rule(StaticRule("second", 10, ModerationStatus.REJECTED))

    decision = asyncio.run(service.evaluate_post_decision(_post()))

    assert decision.status is ModerationStatus.REJECTED
    assert decision.rule_name == "second"
    # Equal priorities keep registration order.
    assert decision.evaluated_rules == ["first", "second"]


def test_rule_failure_is_fail_safe_by_default() -> None:
    service = ModerationService(InMemoryStore())
    service.register_rule(ExplodingRule())
    fallback = ManualModerationRule()
    service.register_rule(fallback)

    decision = asyncio.run(service.evaluate_post_decision(_post()))

    assert decision.status is ModerationStatus.FLAGGED
    assert decision.reason == "rule Exploding failed: classifier timeout"
    assert decision.evaluated_rules == ["Exploding"]


def test_rule_failure_can_be_skipped() -> None:
    service = ModerationService(InMemoryStore(), failure_policy="skip")
    service.register_rule(ExplodingRule())
    service.register_rule(ManualModerationRule(default_status=ModerationStatus.PENDING))

    decision = asyncio.run(service.evaluate_post_decision(_post()))

    assert decision.status is ModerationStatus.PENDING
    assert decision.reason == "Awaiting manual review"
    assert decision.metadata == {"rule": "manual_moderation"}


def test_blocked_terms_rule_flags_and_halts() -> None:
    service = ModerationService(InMemoryStore())
    service.register_rule(BlockedTermsRule(["Spam"]))
    service.register_rule(ManualModerationRule())

    flagged = asyncio.run(service.evaluate_post_decision(_post(caption="Totally not SPAM")))
    clean = asyncio.run(service.evaluate_post_decision(_post(caption="sunset", tags=["beach"])))

    assert flagged.status is ModerationStatus.FLAGGED
    assert flagged.metadata == {"rule": "blocked_terms", "terms": "spam"}
    assert clean.status is ModerationStatus.APPROVED
    assert clean.rule_name == "Manual Moderation"


def test_evaluate_content_uses_an_unsaved_post(store: InMemoryStore) -> None:
    service = ModerationService(store)
    service.register_rule(BlockedTermsRule(["scam"]))

    status = asyncio.run(service.evaluate_content(image_url="https://cdn/x.jpg", caption="crypto scam"))

    assert status is ModerationStatus.FLAGGED
    assert not status.is_visible_to_users
    assert store.collections == {}


def test_overrides_update_status_and_append_history(store: InMemoryStore) -> None:
    store.seed("posts", [make_post("p1")])
    service = ModerationService(store)

    async def scenario() -> list[dict]:
        await service.flag_post("p1", "mod-1", reason="needs a second look")
        await service.approve_post("p1", "mod-2", notes="fine")
        # Re-approving is allowed and still audited.
        await service.approve_post("p1", "mod-2")
        return await service.get_moderation_history("p1")

    history = asyncio.run(scenario())

    assert [row["action"] for row in history] == ["flagged", "approved", "approved"]
    assert history[0]["reason"] == "needs a second look"
    assert history[1]["notes"] == "fine"
    assert {row["ruleName"] for row in history} == {MANUAL_REVIEW_RULE}
    post = store.collections["posts"]["p1"]
    assert post["moderationStatus"] == "approved"
    assert post["moderatedBy"] == "mod-2"
    assert post["moderationReason"] == "needs a second look"


def test_reject_without_reason_is_accepted(store: InMemoryStore) -> None:
    store.seed("posts", [make_post("p1")])
    service = ModerationService(store)

    action = asyncio.run(service.reject_post("p1", "mod-1"))

    assert action["action"] == "rejected"
    assert action["reason"] is None
    assert store.collections["posts"]["p1"]["moderationStatus"] == "rejected"


def test_approve_records_optional_reason(store: InMemoryStore) -> None:
    store.seed("posts", [make_post("p1")])
    service = ModerationService(store)

    action = asyncio.run(service.approve_post("p1", "mod-1", reason="false positive", notes="appeal"))

    assert action["action"] == "approved"
    assert action["reason"] == "false positive"
    assert action["notes"] == "appeal"
    post = store.collections["posts"]["p1"]
    assert post["moderationStatus"] == "approved"
    assert post["moderationReason"] == "false positive"


def test_override_on_missing_post_writes_nothing(store: InMemoryStore) -> None:
    service = ModerationService(store)

    with pytest.raises(RepositoryNotFoundError, match="post not found"):
        asyncio.run(service.approve_post("missing", "mod-1"))
    assert ACTIONS_COLLECTION not in store.collections or not store.collections[ACTIONS_COLLECTION]


def test_override_raises_when_action_cannot_be_read_back(
    store: InMemoryStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    store.seed("posts", [make_post("p1")])
    service = ModerationService(store)
    real_get = store.get

    async def _get(collection: str, doc_id: str):
        if collection == ACTIONS_COLLECTION:
            return None
        return await real_get(collection, doc_id)

    monkeypatch.setattr(store, "get", _get)

    with pytest.raises(RepositoryError, match="was not persisted"):
        asyncio.run(service.flag_post("p1", "mod-1"))


def test_moderate_post_persists_rule_decision(store: InMemoryStore) -> None:
    store.seed("posts", [make_post("p1", caption="buy followers now")])
    service = ModerationService(store)
    service.register_rule(BlockedTermsRule(["buy followers"]))
    service.register_rule(ManualModerationRule())

    decision = asyncio.run(service.moderate_post("p1"))
    history = asyncio.run(service.get_moderation_history("p1"))

    assert decision.status is ModerationStatus.FLAGGED
    assert store.collections["posts"]["p1"]["moderationStatus"] == "flagged"
    assert history[0]["moderatorUserId"] == "system"
    assert history[0]["ruleName"] == "Blocked Terms"


def test_rules_never_revisit_decided_posts(store: InMemoryStore) -> None:
    store.seed("posts", [make_post("p1", moderationStatus="approved"), make_post("p2", moderationStatus="flagged")])
    service = ModerationService(store)

    for post_id in ("p1", "p2"):
        with pytest.raises(RepositoryConflictError):
            asyncio.run(service.moderate_post(post_id))
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(service.moderate_post("missing"))


def test_pending_and_flagged_queries_are_newest_first_and_bounded(store: InMemoryStore) -> None:
    store.seed(
        "posts",
        [
            make_post("old", createdAt="2024-01-01T00:00:00+00:00"),
            make_post("new", createdAt="2024-03-01T00:00:00+00:00"),
            make_post("mid", createdAt="2024-02-01T00:00:00+00:00"),
            make_post("bad", moderationStatus="flagged", createdAt="2024-02-15T00:00:00+00:00"),
        ],
    )
    service = ModerationService(store)

    pending = asyncio.run(service.get_pending_posts(limit=2))
    flagged = asyncio.run(service.get_flagged_posts())

    assert [post.id for post in pending] == ["new", "mid"]
    assert [post.id for post in flagged] == ["bad"]


def test_status_display_names() -> None:
    assert ModerationStatus.PENDING.display_name == "Pending Review"
    assert ModerationStatus.REJECTED.display_name == "Rejected"
    assert ModerationStatus.APPROVED.is_visible_to_users
