from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Protocol
from uuid import uuid4

from opentelemetry import trace

from curator.services.documents import (
    SERVER_TIMESTAMP,
    DocumentStore,
    FieldFilter,
    RepositoryConflictError,
    RepositoryError,
    RepositoryNotFoundError,
)
from curator.services.posts import POSTS_COLLECTION, Post

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ACTIONS_COLLECTION = "moderation_actions"
MANUAL_REVIEW_RULE = "Manual Review"
SYSTEM_MODERATOR_ID = "system"

RuleFailurePolicy = Literal["fail_safe", "skip"]


class ModerationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FLAGGED = "flagged"

    @property
    def display_name(self) -> str:
        return "Pending Review" if self is ModerationStatus.PENDING else self.value.capitalize()

    @property
    def is_visible_to_users(self) -> bool:
        return self is ModerationStatus.APPROVED


@dataclass(frozen=True, slots=True)
class ModerationResult:
    status: ModerationStatus
    reason: str | None = None
    metadata: dict[str, str] | None = None
    should_continue_evaluation: bool = True


@dataclass(slots=True)
class ModerationDecision:
    status: ModerationStatus
    reason: str | None = None
    metadata: dict[str, str] | None = None
    rule_name: str | None = None
    evaluated_rules: list[str] = field(default_factory=list)


class ModerationRule(Protocol):
    """A stateless policy unit. Rules run highest ``priority`` first.

    Suggested ranges: 100+ critical security rules, 50-99 high priority
    automated rules, 10-49 standard rules, 1-9 low priority, 0 fallback.
    """

    name: str
    priority: int

    async def evaluate(self, post: Post) -> ModerationResult: ...


class ManualModerationRule:
    """Fallback rule that applies a fixed status, halting evaluation when final."""

    name = "Manual Moderation"
    priority = 0

    def __init__(
        self,
        default_status: ModerationStatus = ModerationStatus.APPROVED,
        is_final_decision: bool = True,
    ) -> None:
        self.default_status = default_status
        self.is_final_decision = is_final_decision

    async def evaluate(self, post: Post) -> ModerationResult:
        logger.debug("manual moderation rule applying status=%s post=%s", self.default_status.value, post.id)
        return ModerationResult(
            status=self.default_status,
            reason="Awaiting manual review" if self.default_status is ModerationStatus.PENDING else None,
            metadata={"rule": "manual_moderation"},
            should_continue_evaluation=not self.is_final_decision,
        )


class BlockedTermsRule:
    """Flags posts whose caption or tags contain a blocked term."""

    name = "Blocked Terms"
    priority = 50

    def __init__(self, terms: list[str]) -> None:
        self.terms = sorted({term.strip().lower() for term in terms if term.strip()})

    async def evaluate(self, post: Post) -> ModerationResult:
        haystack = " ".join(
            [post.caption or "", *[tag for tag in post.legacy_tags() if isinstance(tag, str)]]
        ).lower()
        hits = [term for term in self.terms if term in haystack]
        if not hits:
            return ModerationResult(status=ModerationStatus.APPROVED)
        return ModerationResult(
            status=ModerationStatus.FLAGGED,
            reason=f"blocked terms: {', '.join(hits)}",
            metadata={"rule": "blocked_terms", "terms": ",".join(hits)},
            should_continue_evaluation=False,
        )


class ModerationService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        default_status: ModerationStatus = ModerationStatus.APPROVED,
        failure_policy: RuleFailurePolicy = "fail_safe",
    ) -> None:
        self.store = store
        self.default_status = default_status
        self.failure_policy = failure_policy
        self._rules: list[ModerationRule] = []

    @property
    def rules(self) -> list[ModerationRule]:
        return list(self._rules)

    def register_rule(self, rule: ModerationRule) -> None:
        logger.info("registering moderation rule name=%s priority=%s", rule.name, rule.priority)
        self._rules.append(rule)
        # list.sort is stable, so equal priorities keep registration order.
        self._rules.sort(key=lambda item: -item.priority)

    async def evaluate_post_decision(self, post: Post) -> ModerationDecision:
        with tracer.start_as_current_span("moderation.evaluate") as span:
            span.set_attribute("post.id", post.id)
            span.set_attribute("moderation.rule_count", len(self._rules))
            decision = await self._run_rules(post)
            span.set_attribute("moderation.status", decision.status.value)

        logger.info(
            "moderation evaluated post=%s status=%s rule=%s",
            post.id,
            decision.status.value,
            decision.rule_name,
        )
        return decision

    async def evaluate_post(self, post: Post) -> ModerationStatus:
        decision = await self.evaluate_post_decision(post)
        return decision.status

    async def evaluate_content(
        self,
        *,
        image_url: str,
        caption: str | None = None,
        interest_ids: list[str] | None = None,
    ) -> ModerationStatus:
        temp_post = Post(
            id=f"temp_{uuid4().hex}",
            user_id="temp",
            image_url=image_url,
            caption=caption,
            interests=list(interest_ids or []),
        )
        return await self.evaluate_post(temp_post)

    async def moderate_post(self, post_id: str) -> ModerationDecision:
        data = await self.store.get(POSTS_COLLECTION, post_id)
        if data is None:
            raise RepositoryNotFoundError("post not found")

        current = data.get("moderationStatus")
        if current not in (None, ModerationStatus.PENDING.value):
            raise RepositoryConflictError(f"cannot run moderation rules on post with status: {current}")

        decision = await self.evaluate_post_decision(Post.from_document(data))
        await self._record_status(
            post_id=post_id,
            status=decision.status,
            moderator_id=SYSTEM_MODERATOR_ID,
            reason=decision.reason,
            notes=None,
            rule_name=decision.rule_name,
            metadata=decision.metadata,
        )
        return decision

    async def approve_post(
        self,
        post_id: str,
        moderator_id: str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        return await self._override(post_id, ModerationStatus.APPROVED, moderator_id, reason, notes)

    async def reject_post(
        self,
        post_id: str,
        moderator_id: str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        return await self._override(post_id, ModerationStatus.REJECTED, moderator_id, reason, notes)

    async def flag_post(
        self,
        post_id: str,
        moderator_id: str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        return await self._override(post_id, ModerationStatus.FLAGGED, moderator_id, reason, notes)

    async def get_moderation_history(self, post_id: str) -> list[dict[str, Any]]:
        return await self.store.query(
            ACTIONS_COLLECTION,
            filters=[FieldFilter("postId", "==", post_id)],
            order_by="timestamp",
        )

    async def get_pending_posts(self, limit: int = 50) -> list[Post]:
        return await self._posts_with_status(ModerationStatus.PENDING, limit)

    async def get_flagged_posts(self, limit: int = 50) -> list[Post]:
        return await self._posts_with_status(ModerationStatus.FLAGGED, limit)

    async def _run_rules(self, post: Post) -> ModerationDecision:
        evaluated: list[str] = []
        last: tuple[ModerationRule, ModerationResult] | None = None

        for rule in list(self._rules):
            evaluated.append(rule.name)
            try:
                result = await rule.evaluate(post)
            except Exception as exc:
                logger.warning("moderation rule failed name=%s post=%s error=%s", rule.name, post.id, exc)
                if self.failure_policy == "fail_safe":
                    return ModerationDecision(
                        status=ModerationStatus.FLAGGED,
                        reason=f"rule {rule.name} failed: {exc}",
                        metadata={"rule_error": type(exc).__name__},
                        rule_name=rule.name,
                        evaluated_rules=evaluated,
                    )
                continue

            last = (rule, result)
            if not result.should_continue_evaluation:
                logger.debug("moderation rule halted evaluation name=%s post=%s", rule.name, post.id)
                break

        if last is None:
            return ModerationDecision(status=self.default_status, evaluated_rules=evaluated)

        rule, result = last
        return ModerationDecision(
            status=result.status,
            reason=result.reason,
            metadata=result.metadata,
            rule_name=rule.name,
            evaluated_rules=evaluated,
        )

    async def _override(
        self,
        post_id: str,
        status: ModerationStatus,
        moderator_id: str,
        reason: str | None,
        notes: str | None,
    ) -> dict[str, Any]:
        logger.info("moderation override post=%s status=%s moderator=%s", post_id, status.value, moderator_id)
        return await self._record_status(
            post_id=post_id,
            status=status,
            moderator_id=moderator_id,
            reason=reason,
            notes=notes,
            rule_name=MANUAL_REVIEW_RULE,
            metadata=None,
        )

    async def _record_status(
        self,
        *,
        post_id: str,
        status: ModerationStatus,
        moderator_id: str,
        reason: str | None,
        notes: str | None,
        rule_name: str | None,
        metadata: dict[str, str] | None,
    ) -> dict[str, Any]:
        updates: dict[str, Any] = {
            "moderationStatus": status.value,
            "moderatedAt": SERVER_TIMESTAMP,
            "moderatedBy": moderator_id,
        }
        if reason is not None:
            updates["moderationReason"] = reason

        action_id = uuid4().hex
        batch = self.store.batch()
        batch.update(POSTS_COLLECTION, post_id, updates)
        batch.set(
            ACTIONS_COLLECTION,
            action_id,
            {
                "postId": post_id,
                "moderatorUserId": moderator_id,
                "action": status.value,
                "reason": reason,
                "notes": notes,
                "ruleName": rule_name,
                "timestamp": SERVER_TIMESTAMP,
                "metadata": metadata,
            },
        )
        try:
            await self.store.commit(batch)
        except RepositoryNotFoundError as exc:
            raise RepositoryNotFoundError("post not found") from exc

        action = await self.store.get(ACTIONS_COLLECTION, action_id)
        if action is None:
            raise RepositoryError(f"moderation action {action_id} was not persisted")
        return action

    async def _posts_with_status(self, status: ModerationStatus, limit: int) -> list[Post]:
        rows = await self.store.query(
            POSTS_COLLECTION,
            filters=[FieldFilter("moderationStatus", "==", status.value)],
            order_by="createdAt",
            descending=True,
            limit=limit,
        )
        return [Post.from_document(row) for row in rows]
