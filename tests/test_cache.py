"""
tests/test_cache.py — SettingsCache & Seeder Tests
===================================================

Typed accessors, tier allotments, and loading the seeded settings table.
"""

from __future__ import annotations

import json

import pytest
from sqlalchemy.orm import Session

from totemic.database.engine import init_db
from totemic.database.models import Setting
from totemic.database.seed import DEFAULT_SETTINGS, seed_default_settings
from totemic.engine.cache import SettingsCache


class TestTypedAccessors:
    @pytest.fixture
    def cache(self):
        return SettingsCache(initial={
            "int_key": 7,
            "float_key": "2.5",
            "bool_key": 1,
            "junk": "abc",
        })

    def test_get_int(self, cache):
        assert cache.get_int("int_key") == 7
        assert cache.get_int("missing", 3) == 3
        assert cache.get_int("junk", 9) == 9

    def test_get_float(self, cache):
        assert cache.get_float("float_key") == 2.5
        assert cache.get_float("junk", 1.5) == 1.5

    def test_get_bool(self, cache):
        assert cache.get_bool("bool_key") is True
        assert cache.get_bool("missing") is False

    def test_load_all_without_engine_is_noop(self, cache):
        cache.load_all()
        assert cache.get_int("int_key") == 7


class TestRefreshAllotment:
    @pytest.mark.parametrize("tier, expected", [("free", 5), ("premium", 20), ("admin", 20)])
    def test_defaults(self, tier, expected):
        assert SettingsCache().refresh_allotment(tier) == expected

    def test_unknown_tier_gets_free(self):
        assert SettingsCache().refresh_allotment("gold") == 5

    def test_override_from_settings(self):
        cache = SettingsCache(initial={"refresh.daily_allotment.free": 2})
        assert cache.refresh_allotment("free") == 2

    def test_negative_clamped(self):
        cache = SettingsCache(initial={"refresh.daily_allotment.free": -4})
        assert cache.refresh_allotment("free") == 0


class TestSeedAndLoad:
    def test_seed_is_idempotent(self, db_engine):
        assert seed_default_settings(db_engine) == len(DEFAULT_SETTINGS)
        assert seed_default_settings(db_engine) == 0

    def test_operator_edits_survive_reseed(self, db_engine):
        init_db(db_engine)
        with Session(db_engine) as session:
            session.get(Setting, "refresh.daily_allotment.premium").value_json = json.dumps(30)
            session.commit()
        seed_default_settings(db_engine)

        cache = SettingsCache(db_engine)
        cache.load_all()
        assert cache.refresh_allotment("premium") == 30
        assert cache.refresh_allotment("free") == 5

    def test_reload_picks_up_changes(self, db_engine):
        init_db(db_engine)
        cache = SettingsCache(db_engine)
        cache.load_all()
        with Session(db_engine) as session:
            session.get(Setting, "refresh.daily_allotment.free").value_json = "3"
            session.commit()
        assert cache.refresh_allotment("free") == 5
        cache.reload()
        assert cache.refresh_allotment("free") == 3
