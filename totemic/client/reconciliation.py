"""
totemic.client.reconciliation — Optimistic Local Like State
============================================================

The contract a UI-side consumer follows around the engagement engine:

1. Flip the local view immediately (:meth:`OptimisticLikeState.apply_optimistic`).
2. Submit the operation to the engine on a worker thread (``run_db``).
3. On success adopt the engine's authoritative values; on any error roll
   back to the snapshot taken in step 1 and expose the message verbatim.

A ``CONTENTION`` failure is retried silently a few times before it is
surfaced.  Between server reads a view can be re-decayed locally with
:func:`local_crispness`; that value is cosmetic and never written back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from totemic.database.engine import run_db
from totemic.engine.decay import crispness as compute_crispness
from totemic.engine.ledger import LikeEvent
from totemic.errors import ErrorKind

if TYPE_CHECKING:
    from totemic.services.engagement_service import EngagementResult, EngagementService

logger = logging.getLogger(__name__)

# (post_id, answer_id, label_name)
LikeKey = tuple[str, str | None, str]


@dataclass(slots=True)
class LocalLikeView:
    """What the user currently sees for one totem."""

    is_liked: bool = False
    count: int = 0
    crispness: float = 0.0
    # Set when the engine asked for a restore/refresh choice
    decision_required: bool = False
    restore_crispness: float | None = None
    error: str | None = None


def local_crispness(history: Iterable[LikeEvent | dict], now: int) -> float:
    """Re-decay a cached like history on the client clock."""
    events = [e if isinstance(e, LikeEvent) else LikeEvent.from_dict(e) for e in history]
    return round(compute_crispness(events, now), 2)


class OptimisticLikeState:
    """Local views for one signed-in user, kept consistent with the engine.

    Usage:
        state = OptimisticLikeState(service, user_id="u1")
        result = await state.toggle("post-1", "calm")
        view = state.view(("post-1", None, "calm"))
    """

    def __init__(
        self,
        service: EngagementService,
        user_id: str,
        *,
        contention_retries: int = 2,
    ) -> None:
        self.service = service
        self.user_id = user_id
        self.contention_retries = contention_retries
        self._views: dict[LikeKey, LocalLikeView] = {}
        self._snapshots: dict[LikeKey, LocalLikeView] = {}

    # -------------------------------------------------------------------
    # View bookkeeping
    # -------------------------------------------------------------------
    def view(self, key: LikeKey) -> LocalLikeView:
        return self._views.setdefault(key, LocalLikeView())

    def seed(self, key: LikeKey, view: LocalLikeView) -> None:
        """Install a view from a server read."""
        self._views[key] = view

    def apply_optimistic(self, key: LikeKey, liked: bool) -> LocalLikeView:
        """Show the expected outcome before the engine answers."""
        current = self.view(key)
        self._snapshots[key] = replace(current)
        if liked:
            updated = replace(
                current, is_liked=True, count=current.count + 1, crispness=100.0,
                decision_required=False, restore_crispness=None, error=None,
            )
        else:
            count = max(0, current.count - 1)
            updated = replace(
                current, is_liked=False, count=count,
                crispness=0.0 if count == 0 else current.crispness,
                decision_required=False, restore_crispness=None, error=None,
            )
        self._views[key] = updated
        return updated

    def reconcile(self, key: LikeKey, result: EngagementResult) -> LocalLikeView:
        """Replace the optimistic view with the engine's answer."""
        if not result.success:
            return self.rollback(key, result.message)

        snapshot = self._snapshots.pop(key, None)
        if result.decision_required:
            # Nothing was written: back to what was shown, plus the choice
            base = snapshot or self.view(key)
            updated = replace(
                base, is_liked=False, count=result.like_count, crispness=result.crispness,
                decision_required=True, restore_crispness=result.restore_crispness, error=None,
            )
        else:
            updated = LocalLikeView(
                is_liked=result.is_active,
                count=result.like_count,
                crispness=result.crispness,
            )
        self._views[key] = updated
        return updated

    def rollback(self, key: LikeKey, message: str | None = None) -> LocalLikeView:
        snapshot = self._snapshots.pop(key, None) or self.view(key)
        restored = replace(snapshot, error=message)
        self._views[key] = restored
        return restored

    # -------------------------------------------------------------------
    # Engine calls
    # -------------------------------------------------------------------
    async def _submit(
        self,
        key: LikeKey,
        liked: bool,
        call: Callable[..., EngagementResult],
    ) -> EngagementResult:
        post_id, answer_id, label_name = key
        self.apply_optimistic(key, liked)

        result = await run_db(call, post_id, label_name, self.user_id, answer_id)
        retries = 0
        while result.error is ErrorKind.CONTENTION and retries < self.contention_retries:
            retries += 1
            logger.debug("Contention on %s — silent retry %d", key, retries)
            result = await run_db(call, post_id, label_name, self.user_id, answer_id)

        self.reconcile(key, result)
        return result

    async def toggle(
        self, post_id: str, label_name: str, answer_id: str | None = None
    ) -> EngagementResult:
        key = (post_id, answer_id, label_name)
        return await self._submit(key, not self.view(key).is_liked, self.service.toggle_like)

    async def restore(
        self, post_id: str, label_name: str, answer_id: str | None = None
    ) -> EngagementResult:
        return await self._submit(
            (post_id, answer_id, label_name), True, self.service.restore_like,
        )

    async def refresh(
        self, post_id: str, label_name: str, answer_id: str | None = None
    ) -> EngagementResult:
        return await self._submit(
            (post_id, answer_id, label_name), True, self.service.refresh_like,
        )
