"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from totemic.config import TotemicConfig
from totemic.constants import DAY_MS
from totemic.database.models import Base
from totemic.engine.cache import SettingsCache
from totemic.services.engagement_service import EngagementService
from totemic.services.record_store import PostRecordStore

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER to match SQLite's native integer type.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

# 2026-03-02 12:00:00 UTC, a Monday
T0 = 1_772_452_800_000


class FakeClock:
    """Controllable epoch-ms clock; call it to read, ``advance`` to move."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 0, *, days: float = 0) -> int:
        self.now += ms + int(days * DAY_MS)
        return self.now


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Totemic tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_cache() -> SettingsCache:
    """A cache with no engine; allotments fall back to the built-in defaults."""
    return SettingsCache()


@pytest.fixture
def config() -> TotemicConfig:
    return TotemicConfig(
        service_name="totemic-test",
        max_retries=3,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
    )


@pytest.fixture
def store(db_engine) -> PostRecordStore:
    return PostRecordStore(db_engine)


@pytest.fixture
def service(db_engine, settings_cache, config, clock, store) -> EngagementService:
    return EngagementService(
        db_engine, settings_cache, config, store=store, clock=clock, sleep=lambda _s: None,
    )


@pytest.fixture
def post(store):
    """A post with two answers; ``calm`` appears on both."""
    return store.create_post(
        "post-1",
        [
            {"id": "a1", "totems": [{"name": "calm"}, {"name": "bold"}]},
            {"id": "a2", "totems": [{"name": "calm"}]},
        ],
        question="How does this make you feel?",
    )
