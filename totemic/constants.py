"""
totemic.constants — Shared Constants & Time Helpers
=====================================================

Single source of truth for the decay window, membership tiers and the
default refresh allotments.  Import from here instead of duplicating in
the engine, services, and client layer.
"""

from __future__ import annotations

import enum
import time
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# ---------------------------------------------------------------------------
# Decay window: a like loses all of its weight after exactly one week
# ---------------------------------------------------------------------------
DAY_MS: int = 24 * 60 * 60 * 1000
WEEK_MS: int = 7 * DAY_MS

# Weight of a single like; present for future weighting.
DEFAULT_LIKE_VALUE: float = 1.0


# ---------------------------------------------------------------------------
# Membership tiers & daily refresh allotments
# ---------------------------------------------------------------------------
class MembershipTier(enum.StrEnum):
    """Subscription tier of a profile; decides the daily refresh allotment."""
    FREE = "free"
    PREMIUM = "premium"
    ADMIN = "admin"


DEFAULT_REFRESH_ALLOTMENTS: dict[MembershipTier, int] = {
    MembershipTier.FREE: 5,
    MembershipTier.PREMIUM: 20,
    MembershipTier.ADMIN: 20,
}


def allotment_setting_key(tier: MembershipTier | str) -> str:
    """Settings-table key holding the daily allotment for *tier*."""
    return f"refresh.daily_allotment.{MembershipTier(tier).value}"


# ---------------------------------------------------------------------------
# Clock helpers: all engine timestamps are epoch milliseconds
# ---------------------------------------------------------------------------
def now_ms() -> int:
    """Server clock in epoch milliseconds."""
    return int(time.time() * 1000)


def resolve_timezone(name: str | None, fallback: str = "UTC") -> ZoneInfo:
    """Return the :class:`ZoneInfo` for *name*, or *fallback* if unknown."""
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC")


def local_date(epoch_ms: int, tz: ZoneInfo) -> date:
    """Calendar date of *epoch_ms* on the clock of *tz*."""
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).astimezone(tz).date()
