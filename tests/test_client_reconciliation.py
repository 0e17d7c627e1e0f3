"""
tests/test_client_reconciliation.py — Optimistic Local State Tests
===================================================================

Async helpers are driven with ``asyncio.run``; the engine runs against
the shared in-memory SQLite fixtures, or a MagicMock where a specific
engine answer is needed.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from totemic.client.reconciliation import LocalLikeView, OptimisticLikeState, local_crispness
from totemic.constants import DAY_MS, WEEK_MS
from totemic.engine.ledger import LikeEvent
from totemic.errors import ErrorKind
from totemic.services.engagement_service import EngagementResult, EngagementService

KEY = ("post-1", None, "calm")


class TestApplyOptimistic:
    def test_like_bumps_count_and_shows_full_crispness(self):
        state = OptimisticLikeState(MagicMock(), "u1")
        state.seed(KEY, LocalLikeView(is_liked=False, count=2, crispness=40.0))
        view = state.apply_optimistic(KEY, True)
        assert (view.is_liked, view.count, view.crispness) == (True, 3, 100.0)

    def test_unlike_last_like_zeroes_crispness(self):
        state = OptimisticLikeState(MagicMock(), "u1")
        state.seed(KEY, LocalLikeView(is_liked=True, count=1, crispness=100.0))
        view = state.apply_optimistic(KEY, False)
        assert (view.is_liked, view.count, view.crispness) == (False, 0, 0.0)

    def test_unlike_with_other_likes_keeps_crispness(self):
        state = OptimisticLikeState(MagicMock(), "u1")
        state.seed(KEY, LocalLikeView(is_liked=True, count=3, crispness=80.0))
        assert state.apply_optimistic(KEY, False).crispness == 80.0

    def test_rollback_restores_snapshot_with_message(self):
        state = OptimisticLikeState(MagicMock(), "u1")
        state.seed(KEY, LocalLikeView(is_liked=False, count=2, crispness=40.0))
        state.apply_optimistic(KEY, True)
        view = state.rollback(KEY, "No refreshes remaining today.")
        assert (view.is_liked, view.count, view.crispness) == (False, 2, 40.0)
        assert view.error == "No refreshes remaining today."


class TestAgainstEngine:
    def test_toggle_adopts_engine_values(self, service, post):
        state = OptimisticLikeState(service, "u1")
        result = asyncio.run(state.toggle("post-1", "calm"))
        assert result.success
        view = state.view(KEY)
        assert (view.is_liked, view.count, view.crispness) == (True, 1, 100.0)

    def test_decision_point_surfaces_choice(self, service, post, clock):
        state = OptimisticLikeState(service, "u1")
        asyncio.run(state.toggle("post-1", "calm"))
        asyncio.run(state.toggle("post-1", "calm"))
        clock.advance(days=1)
        asyncio.run(state.toggle("post-1", "calm"))

        view = state.view(KEY)
        assert view.decision_required
        assert not view.is_liked
        assert view.count == 0
        assert view.restore_crispness == 100.0

        asyncio.run(state.restore("post-1", "calm"))
        view = state.view(KEY)
        assert view.is_liked
        assert not view.decision_required

    def test_quota_error_rolls_back(self, service, post):
        state = OptimisticLikeState(service, "u1")
        asyncio.run(state.toggle("post-1", "calm"))
        for _ in range(5):
            asyncio.run(state.refresh("post-1", "calm"))
        before = state.view(KEY)

        result = asyncio.run(state.refresh("post-1", "calm"))
        assert result.error is ErrorKind.QUOTA_EXHAUSTED
        view = state.view(KEY)
        assert (view.is_liked, view.count) == (before.is_liked, before.count)
        assert view.error == result.message

    def test_answer_scoped_key(self, service, post):
        state = OptimisticLikeState(service, "u1")
        asyncio.run(state.toggle("post-1", "calm", answer_id="a2"))
        assert state.view(("post-1", "a2", "calm")).is_liked
        assert not state.view(KEY).is_liked


class TestContentionRetries:
    @pytest.fixture
    def busy(self):
        return EngagementResult(
            success=False, error=ErrorKind.CONTENTION,
            message="The totem is busy right now. Please try again.",
        )

    def test_silent_retry_then_success(self, busy):
        engine_service = MagicMock(spec=EngagementService)
        engine_service.toggle_like.side_effect = [
            busy, EngagementResult(success=True, is_active=True, crispness=100.0, like_count=1),
        ]
        state = OptimisticLikeState(engine_service, "u1", contention_retries=2)
        result = asyncio.run(state.toggle("post-1", "calm"))
        assert result.success
        assert engine_service.toggle_like.call_count == 2
        assert state.view(KEY).error is None

    def test_surfaces_after_retries(self, busy):
        engine_service = MagicMock(spec=EngagementService)
        engine_service.toggle_like.return_value = busy
        state = OptimisticLikeState(engine_service, "u1", contention_retries=2)
        result = asyncio.run(state.toggle("post-1", "calm"))
        assert result.error is ErrorKind.CONTENTION
        assert engine_service.toggle_like.call_count == 3
        view = state.view(KEY)
        assert not view.is_liked
        assert view.error == busy.message


class TestLocalCrispness:
    def test_matches_decay_model(self):
        now = 10 * WEEK_MS
        history = [
            LikeEvent("u1", now - DAY_MS, now - DAY_MS).to_dict(),
            LikeEvent("u2", now - 8 * DAY_MS, now - 8 * DAY_MS),
        ]
        assert local_crispness(history, now) == 100.0
        assert local_crispness(history, now + 6 * DAY_MS) == 0.0
