"""
totemic.services.reconciliation_service — Stored State Reconciliation
======================================================================

Maintenance sweeps for rows that drifted outside the engine: documents
still in a legacy layout, cached ``crispness`` / ``likes`` values that no
longer match the like history, or quota rows edited by hand.

The engine itself never depends on these sweeps.  Crispness is always
recomputed from history at read time; the cached value on the label only
serves readers that bypass the engine.

How ``reconcile_posts`` works:
    1. Read each post and normalize its document.
    2. Recompute every label's ``crispness`` and ``likes`` at ``now``.
    3. If the result differs from what is stored, write it back under the
       post's version check.  A post changed concurrently is skipped; the
       next sweep picks it up.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine

from totemic.constants import now_ms as server_now_ms
from totemic.engine.cache import SettingsCache
from totemic.engine.ledger import recompute_label
from totemic.services.quota_service import apply_rollover
from totemic.services.record_store import PostRecordStore, RecordConflictError

logger = logging.getLogger(__name__)


def reconcile_posts(engine: Engine, now_ms: int | None = None) -> dict:
    """Normalize and recompute every post; fix drift.

    Returns ``{"checked": N, "corrected": M, "corrections": [...], "timestamp": ...}``.
    """
    now = now_ms if now_ms is not None else server_now_ms()
    store = PostRecordStore(engine)
    corrections: list[dict] = []
    checked = 0

    for post_id in store.post_ids():
        checked += 1
        try:
            with store.transaction() as unit:
                post = unit.load_post(post_id)
                stored = unit.stored_answers(post_id)
                for answer in post.answers:
                    for label in answer.labels:
                        recompute_label(label, now)
                rebuilt = post.answers_document()
                if rebuilt == stored:
                    continue
                # Only cached values and layout change; interaction stamps stay
                unit.save_post(post, None)
                corrections.append({"post_id": post_id})
        except RecordConflictError:
            logger.info("Post %s changed during reconciliation — skipped", post_id)

    if corrections:
        logger.warning(
            "Post reconciliation: corrected %d/%d posts: %s",
            len(corrections), checked, corrections,
        )
    else:
        logger.info("Post reconciliation: all %d posts match", checked)

    return {
        "checked": checked,
        "corrected": len(corrections),
        "corrections": corrections,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def reconcile_quotas(
    engine: Engine,
    now_ms: int | None = None,
    cache: SettingsCache | None = None,
    default_tz: str = "UTC",
    store: PostRecordStore | None = None,
) -> dict:
    """Clamp negative quotas and apply pending day rollovers.

    Each profile is fixed in its own transaction under its version check,
    so a concurrent refresh is never overwritten.  A profile changed
    mid-sweep is skipped; the next sweep picks it up.

    Returns the same report shape as :func:`reconcile_posts`.
    """
    now = now_ms if now_ms is not None else server_now_ms()
    if cache is None:
        cache = SettingsCache(engine)
        cache.load_all()
    store = store or PostRecordStore(engine)
    corrections: list[dict] = []
    checked = 0

    for user_id in store.profile_ids():
        checked += 1
        try:
            with store.transaction() as unit:
                profile = unit.load_profile(user_id)
                if profile is None:
                    continue
                before = profile.refreshes_remaining
                if before < 0:
                    profile.refreshes_remaining = 0
                rolled = apply_rollover(profile, now, cache, default_tz)
                if not (rolled or before < 0):
                    continue
                correction = {
                    "user_id": user_id,
                    "stored": before,
                    "actual": profile.refreshes_remaining,
                    "rolled_over": rolled,
                }
            corrections.append(correction)
        except RecordConflictError:
            logger.info("Profile %s changed during reconciliation — skipped", user_id)

    if corrections:
        logger.warning(
            "Quota reconciliation: corrected %d/%d profiles", len(corrections), checked,
        )
    else:
        logger.info("Quota reconciliation: all %d profiles match", checked)

    return {
        "checked": checked,
        "corrected": len(corrections),
        "corrections": corrections,
        "timestamp": datetime.now(UTC).isoformat(),
    }
