"""
tests/test_quota_service.py — Refresh Quota Tests
==================================================

Calendar-day rollover, exhaustion, tiers and legacy profile import.
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from totemic.constants import DAY_MS
from totemic.database.models import Profile
from totemic.engine.cache import SettingsCache
from totemic.errors import QuotaExhaustedError, ValidationError
from totemic.services import quota_service

HOUR_MS = 60 * 60 * 1000


def _consume(store, user_id, now, cache, tz="UTC"):
    with store.transaction() as unit:
        return quota_service.consume_refresh(unit, user_id, now, cache, tz)


def _profile(db_engine, user_id) -> Profile:
    with Session(db_engine) as session:
        return session.get(Profile, user_id)


class TestConsumeRefresh:
    def test_new_profile_gets_free_allotment(self, store, settings_cache, clock, db_engine):
        assert _consume(store, "u1", clock(), settings_cache) == 4
        profile = _profile(db_engine, "u1")
        assert profile.membership_tier == "free"
        assert profile.refreshes_remaining == 4

    def test_exhaustion_raises_and_leaves_zero(self, store, settings_cache, clock, db_engine):
        for expected in (4, 3, 2, 1, 0):
            assert _consume(store, "u1", clock(), settings_cache) == expected
        with pytest.raises(QuotaExhaustedError) as exc_info:
            _consume(store, "u1", clock(), settings_cache)
        assert exc_info.value.resets_on == "2026-03-03"
        assert _profile(db_engine, "u1").refreshes_remaining == 0

    def test_rollover_on_next_calendar_day(self, store, settings_cache, clock):
        for _ in range(5):
            _consume(store, "u1", clock(), settings_cache)
        # 12:00 → 00:30 next day
        clock.advance(12 * HOUR_MS + 30 * 60 * 1000)
        assert _consume(store, "u1", clock(), settings_cache) == 4

    def test_no_rollover_within_same_day(self, store, settings_cache, clock):
        _consume(store, "u1", clock(), settings_cache)
        clock.advance(11 * HOUR_MS)
        assert _consume(store, "u1", clock(), settings_cache) == 3

    def test_rollover_uses_profile_timezone(self, store, settings_cache, clock, db_engine):
        with Session(db_engine) as session:
            session.add(Profile(
                user_id="u1", refreshes_remaining=0, refresh_reset_at=clock(),
                timezone="Asia/Tokyo",
            ))
            session.commit()
        # 12:00 UTC is 21:00 in Tokyo; four hours later Tokyo is on the next day
        clock.advance(4 * HOUR_MS)
        assert _consume(store, "u1", clock(), settings_cache) == 4

    def test_future_reset_stamp_rolls_over(self, store, settings_cache, clock, db_engine):
        with Session(db_engine) as session:
            session.add(Profile(
                user_id="u1", refreshes_remaining=0, refresh_reset_at=clock() + 3 * DAY_MS,
            ))
            session.commit()
        assert _consume(store, "u1", clock(), settings_cache) == 4
        assert _profile(db_engine, "u1").refresh_reset_at == clock()

    def test_premium_allotment_from_settings(self, store, clock, db_engine):
        cache = SettingsCache(initial={"refresh.daily_allotment.premium": 7})
        with Session(db_engine) as session:
            session.add(Profile(
                user_id="u1", membership_tier="premium", refreshes_remaining=0,
                refresh_reset_at=clock() - DAY_MS,
            ))
            session.commit()
        assert _consume(store, "u1", clock(), cache) == 6


class TestRefreshStatus:
    def test_unknown_user_reports_full_allotment(self, db_engine, settings_cache, clock):
        status = quota_service.get_refresh_status(db_engine, "ghost", clock(), settings_cache)
        assert status.refreshes_remaining == 5
        assert status.daily_allotment == 5
        assert status.resets_on == "2026-03-03"

    def test_pending_rollover_is_reported_without_writing(
        self, store, db_engine, settings_cache, clock,
    ):
        _consume(store, "u1", clock(), settings_cache)
        clock.advance(days=1)
        status = quota_service.get_refresh_status(db_engine, "u1", clock(), settings_cache)
        assert status.refreshes_remaining == 5
        assert _profile(db_engine, "u1").refreshes_remaining == 4


class TestMembershipTier:
    def test_tier_change_refills_immediately(self, store, db_engine, settings_cache, clock):
        for _ in range(5):
            _consume(store, "u1", clock(), settings_cache)
        quota_service.set_membership_tier(db_engine, "u1", "premium", clock(), settings_cache)
        profile = _profile(db_engine, "u1")
        assert profile.membership_tier == "premium"
        assert profile.refreshes_remaining == 20
        assert profile.refresh_reset_at == clock()

        assert _consume(store, "u1", clock(), settings_cache) == 19

    def test_downgrade_resets_to_smaller_allotment(self, store, db_engine, settings_cache, clock):
        quota_service.set_membership_tier(db_engine, "u1", "premium", clock(), settings_cache)
        _consume(store, "u1", clock(), settings_cache)
        quota_service.set_membership_tier(db_engine, "u1", "free", clock(), settings_cache)
        assert _profile(db_engine, "u1").refreshes_remaining == 5

    def test_new_profile_gets_tier_allotment(self, db_engine, settings_cache, clock):
        quota_service.set_membership_tier(db_engine, "u2", "admin", clock(), settings_cache)
        assert _profile(db_engine, "u2").refreshes_remaining == 20

    def test_unknown_tier_rejected(self, db_engine, settings_cache, clock):
        with pytest.raises(ValidationError):
            quota_service.set_membership_tier(db_engine, "u1", "gold", clock(), settings_cache)


class TestImportProfile:
    def test_legacy_record(self, db_engine, settings_cache, clock):
        quota_service.import_profile(
            db_engine,
            {"firebaseUid": "u9", "refreshResetTime": "2026-03-01T08:00:00Z"},
            clock(),
            settings_cache,
        )
        profile = _profile(db_engine, "u9")
        assert profile.refreshes_remaining == 5
        assert profile.refresh_reset_at == clock() - DAY_MS - 4 * HOUR_MS
