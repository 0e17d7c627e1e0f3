"""
totemic.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- posts     — One row per Post; answers → totems → like history live in a
              single JSONB document so the whole Post is read and written
              as one unit.  ``version`` is the compare-and-swap token.
- profiles  — Per-user refresh quota (and the membership tier that sizes it).
- settings  — Admin-configurable key-value tuning store.

Both ``posts`` and ``profiles`` use SQLAlchemy's ``version_id_col``: every
UPDATE carries ``WHERE version = :expected`` and a concurrent writer makes
the flush raise :class:`~sqlalchemy.orm.exc.StaleDataError`.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from totemic.constants import MembershipTier


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Totemic ORM models."""


# ---------------------------------------------------------------------------
# Posts: the Like Ledger mutation unit
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Answer[] → totems[] → likeHistory[]; always reassigned, never mutated in place
    answers: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_interaction: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_posts_last_interaction", "last_interaction"),
    )

    def __repr__(self) -> str:
        return f"<Post id={self.id!r} version={self.version}>"


# ---------------------------------------------------------------------------
# Profiles: per-user refresh quota
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    membership_tier: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MembershipTier.FREE.value
    )
    refreshes_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Epoch ms of the last quota reset; rollover compares calendar dates
    refresh_reset_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # IANA zone of the user's reference clock; None → service default
    timezone: Mapped[str | None] = mapped_column(String(64), default=None)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("refreshes_remaining >= 0", name="ck_profiles_refreshes_nonneg"),
    )

    def __repr__(self) -> str:
        return (
            f"<Profile user={self.user_id!r} tier={self.membership_tier!r} "
            f"refreshes={self.refreshes_remaining}>"
        )


# ---------------------------------------------------------------------------
# Setting: admin-configurable key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Gameplay tuning (refresh allotments per tier) lives here so it can be
    adjusted without redeploying.  Values are stored as JSON strings;
    typed accessors live in :class:`~totemic.engine.cache.SettingsCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
