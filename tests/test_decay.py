"""
tests/test_decay.py — Decay Model Unit Tests
=============================================

Pure functions, no DB.
"""

from __future__ import annotations

import pytest

from totemic.constants import DAY_MS, WEEK_MS
from totemic.engine.decay import crispness, weight
from totemic.engine.ledger import LikeEvent

NOW = 1_000 * WEEK_MS


def _event(age_ms: int, *, active: bool = True, value: float = 1.0, user: str = "u") -> LikeEvent:
    ts = NOW - age_ms
    return LikeEvent(user, ts, ts, is_active=active, value=value)


class TestWeight:
    def test_fresh_like_has_full_weight(self):
        assert weight(NOW, NOW) == 1.0

    def test_half_week_is_half_weight(self):
        assert weight(NOW, NOW - WEEK_MS // 2) == pytest.approx(0.5)

    def test_exactly_one_week_is_zero(self):
        assert weight(NOW, NOW - WEEK_MS) == 0.0

    def test_older_than_a_week_stays_zero(self):
        assert weight(NOW, NOW - 3 * WEEK_MS) == 0.0

    def test_future_timestamp_treated_as_now(self):
        assert weight(NOW, NOW + DAY_MS) == 1.0

    @pytest.mark.parametrize("days", [0, 1, 2, 3, 4, 5, 6, 7])
    def test_weight_is_within_unit_interval(self, days):
        assert 0.0 <= weight(NOW, NOW - days * DAY_MS) <= 1.0


class TestCrispness:
    def test_empty_history_is_zero(self):
        assert crispness([], NOW) == 0.0

    def test_single_fresh_like_is_100(self):
        assert crispness([_event(0)], NOW) == 100.0

    def test_single_partially_decayed_like_is_still_100(self):
        # Weighted average of one value-1 like is 100 while weight > 0
        assert crispness([_event(3 * DAY_MS)], NOW) == pytest.approx(100.0)

    def test_fully_decayed_likes_give_zero(self):
        assert crispness([_event(WEEK_MS), _event(2 * WEEK_MS, user="v")], NOW) == 0.0

    def test_inactive_events_are_ignored(self):
        events = [_event(0), _event(0, active=False, value=0.0, user="v")]
        assert crispness(events, NOW) == 100.0

    def test_only_inactive_events_give_zero(self):
        assert crispness([_event(0, active=False)], NOW) == 0.0

    def test_mixed_values_are_weight_averaged(self):
        # weights 1.0 and 0.5; values 1.0 and 0.0 → 100 * 1.0 / 1.5
        events = [_event(0, value=1.0), _event(WEEK_MS // 2, value=0.0, user="v")]
        assert crispness(events, NOW) == pytest.approx(100.0 / 1.5)

    def test_result_is_within_bounds(self):
        events = [_event(i * DAY_MS, user=f"u{i}", value=(i % 2) * 1.0) for i in range(9)]
        assert 0.0 <= crispness(events, NOW) <= 100.0
