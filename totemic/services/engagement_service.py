"""
totemic.services.engagement_service — Engagement Engine
========================================================

The caller-facing surface: like, unlike, restore and refresh a totem, and
read its crispness and like count.

Every mutation is one optimistic read-modify-write of the whole Post (and,
for refresh, the user's Profile) inside a single
:meth:`~totemic.services.record_store.PostRecordStore.transaction`.  A
concurrent writer makes the commit fail with
:class:`~totemic.services.record_store.RecordConflictError`; the engine
then backs off and re-runs the body from a fresh read, re-validating the
state machine each time.  No locks are held between attempts.

Mutations never raise :class:`~totemic.errors.EngagementError`; they
return an :class:`EngagementResult` with ``success=False`` and the error's
kind and message instead.  Anything else (a bug, a broken database)
propagates.

Usage::

    service = EngagementService(engine, cache, config)
    result = service.toggle_like("post-1", "calm", "user-42")
    if result.decision_required:
        result = service.restore_like("post-1", "calm", "user-42")
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import Engine

from totemic.constants import MembershipTier, now_ms
from totemic.engine.decay import crispness as compute_crispness
from totemic.engine.ledger import (
    Label,
    like_count,
    locate_label,
    recompute_label,
    touch,
    upsert_event,
)
from totemic.engine.transitions import (
    Action,
    LikeState,
    check_refresh,
    check_restore,
    classify,
    plan_toggle,
)
from totemic.errors import ContentionError, EngagementError, ErrorKind, ValidationError
from totemic.services import quota_service
from totemic.services.record_store import (
    PostRecordStore,
    PostUnit,
    RecordConflictError,
    TransientStoreError,
)

if TYPE_CHECKING:
    from totemic.config import TotemicConfig
    from totemic.engine.cache import SettingsCache
    from totemic.engine.ledger import Answer, PostDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class EngagementResult:
    """Outcome of one engine call.

    ``crispness`` and ``like_count`` are the label's authoritative values
    after the call.  When ``decision_required`` is set nothing was written:
    the caller must follow up with :meth:`EngagementService.restore_like`
    or :meth:`EngagementService.refresh_like`.
    """

    success: bool
    is_active: bool = False
    crispness: float = 0.0
    like_count: int = 0
    action: Action | None = None
    error: ErrorKind | None = None
    message: str | None = None
    decision_required: bool = False
    restore_crispness: float | None = None
    refreshes_remaining: int | None = None

    @classmethod
    def failure(cls, exc: EngagementError) -> EngagementResult:
        return cls(success=False, error=exc.kind, message=exc.message)


def _require(value: str | None, what: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"A {what} is required.")
    return str(value)


class EngagementService:
    """Like ledger operations with optimistic retry and quota accounting."""

    def __init__(
        self,
        engine: Engine,
        cache: SettingsCache,
        config: TotemicConfig,
        *,
        store: PostRecordStore | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.config = config
        self.store = store or PostRecordStore(engine)
        self._clock = clock
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Retry loop
    # -------------------------------------------------------------------
    def _backoff(self, attempt: int) -> float:
        backoff = min(
            self.config.backoff_base_seconds * (2 ** (attempt - 1)),
            self.config.backoff_max_seconds,
        )
        jitter = random.uniform(0, backoff * 0.5)
        return backoff + jitter

    def _run_atomic(self, op_name: str, body: Callable[[PostUnit, int], T]) -> T:
        """Run *body* in a fresh transaction until it commits.

        ``now`` is re-read from the server clock on every attempt so a
        retried write is stamped with the time it actually commits.
        """
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            now = self._clock()
            try:
                with self.store.transaction() as unit:
                    return body(unit, now)
            except (RecordConflictError, TransientStoreError) as exc:
                if attempt >= attempts:
                    logger.warning(
                        "%s: giving up after %d attempts (%s)", op_name, attempt, exc,
                    )
                    raise ContentionError(attempts=attempt) from exc
                wait = self._backoff(attempt)
                logger.warning(
                    "%s: %s on attempt %d/%d — retrying in %.2fs",
                    op_name, type(exc).__name__, attempt, attempts, wait,
                )
                self._sleep(wait)
        raise AssertionError("unreachable")

    def _guarded(self, op_name: str, call: Callable[[], EngagementResult]) -> EngagementResult:
        try:
            return call()
        except EngagementError as exc:
            logger.info("%s rejected (%s): %s", op_name, exc.kind, exc.message)
            return EngagementResult.failure(exc)

    # -------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------
    def _commit_label(
        self,
        unit: PostUnit,
        post: PostDocument,
        answer: Answer,
        label: Label,
        now: int,
        action: Action,
        is_active: bool,
        refreshes_remaining: int | None = None,
    ) -> EngagementResult:
        crisp = recompute_label(label, now)
        touch(post, answer, label, now)
        unit.save_post(post, now)
        return EngagementResult(
            success=True,
            is_active=is_active,
            crispness=crisp,
            like_count=label.likes,
            action=action,
            refreshes_remaining=refreshes_remaining,
        )

    def _restore_preview(self, label: Label, user_id: str, now: int) -> float:
        scratch = Label(name=label.name, like_history=list(label.like_history))
        upsert_event(scratch, user_id, True, now, restore_anchor=self.config.restore_anchor)
        return round(compute_crispness(scratch.like_history, now), 2)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def toggle_like(
        self, post_id: str, label_name: str, user_id: str, answer_id: str | None = None
    ) -> EngagementResult:
        """Like if never liked, unlike if active, otherwise ask for a decision."""

        def body(unit: PostUnit, now: int) -> EngagementResult:
            post = unit.load_post(post_id)
            answer, label = locate_label(post, label_name, answer_id)
            action = plan_toggle(classify(label, user_id))

            if action is Action.DECIDE:
                return EngagementResult(
                    success=True,
                    is_active=False,
                    crispness=round(compute_crispness(label.like_history, now), 2),
                    like_count=like_count(label),
                    action=action,
                    decision_required=True,
                    restore_crispness=self._restore_preview(label, user_id, now),
                    refreshes_remaining=quota_service.peek_refreshes(
                        unit, user_id, now, self.cache, self.config.default_timezone,
                    ),
                )

            is_active = action is Action.LIKE
            upsert_event(label, user_id, is_active, now)
            return self._commit_label(unit, post, answer, label, now, action, is_active)

        return self._guarded("toggle_like", lambda: self._mutate(
            "toggle_like", post_id, label_name, user_id, body,
        ))

    def restore_like(
        self, post_id: str, label_name: str, user_id: str, answer_id: str | None = None
    ) -> EngagementResult:
        """Reactivate an inactive like, keeping its stale decay clock.  Free."""

        def body(unit: PostUnit, now: int) -> EngagementResult:
            post = unit.load_post(post_id)
            answer, label = locate_label(post, label_name, answer_id)
            check_restore(classify(label, user_id), label_name)
            upsert_event(label, user_id, True, now, restore_anchor=self.config.restore_anchor)
            return self._commit_label(unit, post, answer, label, now, Action.RESTORE, True)

        return self._guarded("restore_like", lambda: self._mutate(
            "restore_like", post_id, label_name, user_id, body,
        ))

    def refresh_like(
        self, post_id: str, label_name: str, user_id: str, answer_id: str | None = None
    ) -> EngagementResult:
        """Activate the like at full freshness.  Costs one daily refresh."""

        def body(unit: PostUnit, now: int) -> EngagementResult:
            post = unit.load_post(post_id)
            answer, label = locate_label(post, label_name, answer_id)
            check_refresh(classify(label, user_id), label_name)
            remaining = quota_service.consume_refresh(
                unit, user_id, now, self.cache, self.config.default_timezone,
            )
            upsert_event(label, user_id, True, now, use_refresh=True)
            return self._commit_label(
                unit, post, answer, label, now, Action.REFRESH, True, remaining,
            )

        return self._guarded("refresh_like", lambda: self._mutate(
            "refresh_like", post_id, label_name, user_id, body,
        ))

    def _mutate(
        self,
        op_name: str,
        post_id: str,
        label_name: str,
        user_id: str,
        body: Callable[[PostUnit, int], EngagementResult],
    ) -> EngagementResult:
        _require(post_id, "post id")
        _require(label_name, "totem name")
        _require(user_id, "user id")
        return self._run_atomic(op_name, body)

    # -------------------------------------------------------------------
    # Reads: decay is evaluated lazily against the current clock
    # -------------------------------------------------------------------
    def get_crispness(
        self, post_id: str, label_name: str, answer_id: str | None = None
    ) -> float:
        """Live crispness of a label.  Raises :class:`~totemic.errors.NotFoundError`."""
        post = self.store.read_post(_require(post_id, "post id"))
        _, label = locate_label(post, _require(label_name, "totem name"), answer_id)
        return round(compute_crispness(label.like_history, self._clock()), 2)

    def get_like_count(
        self, post_id: str, label_name: str, answer_id: str | None = None
    ) -> int:
        post = self.store.read_post(_require(post_id, "post id"))
        _, label = locate_label(post, _require(label_name, "totem name"), answer_id)
        return like_count(label)

    def get_like_state(
        self, post_id: str, label_name: str, user_id: str, answer_id: str | None = None
    ) -> LikeState:
        post = self.store.read_post(_require(post_id, "post id"))
        _, label = locate_label(post, _require(label_name, "totem name"), answer_id)
        return classify(label, _require(user_id, "user id"))

    # -------------------------------------------------------------------
    # Quota
    # -------------------------------------------------------------------
    def get_refresh_status(self, user_id: str) -> quota_service.RefreshStatus:
        return quota_service.get_refresh_status(
            self.engine, _require(user_id, "user id"), self._clock(),
            self.cache, self.config.default_timezone,
        )

    def set_membership_tier(
        self, user_id: str, tier: MembershipTier | str, timezone: str | None = None
    ) -> None:
        quota_service.set_membership_tier(
            self.engine, _require(user_id, "user id"), tier, self._clock(),
            self.cache, timezone,
        )
