"""
totemic.services.quota_service — Daily Refresh Quota
=====================================================

Every profile gets a daily allotment of refreshes sized by its membership
tier (see :meth:`~totemic.engine.cache.SettingsCache.refresh_allotment`).
The allotment resets on the first use after a calendar-day boundary on the
user's reference clock: their own timezone if set, otherwise the service
default.  There is no background reset job.

All functions here take an open :class:`~totemic.services.record_store.PostUnit`
(or ``Session``) so the quota change commits in the same transaction as
the like it pays for.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from totemic.constants import MembershipTier, local_date, resolve_timezone
from totemic.database.engine import get_session
from totemic.database.models import Profile
from totemic.errors import QuotaExhaustedError, ValidationError
from totemic.services.normalization import normalize_profile

if TYPE_CHECKING:
    from totemic.engine.cache import SettingsCache
    from totemic.services.record_store import PostUnit

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RefreshStatus:
    user_id: str
    membership_tier: str
    refreshes_remaining: int
    daily_allotment: int
    resets_on: str


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------
def get_or_create_profile(
    unit: PostUnit, user_id: str, now: int, cache: SettingsCache
) -> Profile:
    """Fetch the profile, creating a free-tier one with a full allotment."""
    profile = unit.load_profile(user_id)
    if profile is None:
        profile = Profile(
            user_id=user_id,
            membership_tier=MembershipTier.FREE.value,
            refreshes_remaining=cache.refresh_allotment(MembershipTier.FREE),
            refresh_reset_at=now,
        )
        unit.add_profile(profile)
        logger.info("Created profile for %s", user_id)
    return profile


def rollover_due(profile: Profile, now: int, default_tz: str = "UTC") -> bool:
    """True when *now* is on a different calendar day than the last reset.

    A reset stamp in the future (clock skew, a bad import) counts too, so
    a profile can never be locked out until that day arrives.
    """
    tz = resolve_timezone(profile.timezone, default_tz)
    return local_date(now, tz) != local_date(profile.refresh_reset_at, tz)


def apply_rollover(
    profile: Profile, now: int, cache: SettingsCache, default_tz: str = "UTC"
) -> bool:
    """Reset the allotment if the reset day has changed.  Returns True if it did."""
    if not rollover_due(profile, now, default_tz):
        return False
    profile.refreshes_remaining = cache.refresh_allotment(profile.membership_tier)
    profile.refresh_reset_at = now
    logger.debug(
        "Refresh quota rolled over for %s → %d", profile.user_id, profile.refreshes_remaining
    )
    return True


def next_reset_date(profile: Profile, now: int, default_tz: str = "UTC") -> str:
    tz = resolve_timezone(profile.timezone, default_tz)
    return (local_date(now, tz) + timedelta(days=1)).isoformat()


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def consume_refresh(
    unit: PostUnit,
    user_id: str,
    now: int,
    cache: SettingsCache,
    default_tz: str = "UTC",
) -> int:
    """Charge one refresh to *user_id* and return how many remain.

    Raises
    ------
    QuotaExhaustedError
        Nothing left today.  The profile is left unchanged apart from a
        rollover, which the caller's rollback discards anyway.
    """
    profile = get_or_create_profile(unit, user_id, now, cache)
    apply_rollover(profile, now, cache, default_tz)
    if profile.refreshes_remaining <= 0:
        raise QuotaExhaustedError(resets_on=next_reset_date(profile, now, default_tz))
    profile.refreshes_remaining -= 1
    return profile.refreshes_remaining


def peek_refreshes(
    unit: PostUnit,
    user_id: str,
    now: int,
    cache: SettingsCache,
    default_tz: str = "UTC",
) -> int:
    """Refreshes *user_id* would have right now, without charging one."""
    profile = unit.load_profile(user_id)
    if profile is None:
        return cache.refresh_allotment(MembershipTier.FREE)
    if rollover_due(profile, now, default_tz):
        return cache.refresh_allotment(profile.membership_tier)
    return profile.refreshes_remaining


def get_refresh_status(
    engine: Engine,
    user_id: str,
    now: int,
    cache: SettingsCache,
    default_tz: str = "UTC",
) -> RefreshStatus:
    """Read-only view of a user's quota with any pending rollover applied."""
    with Session(engine) as session:
        profile = session.get(Profile, user_id)
        tier = profile.membership_tier if profile else MembershipTier.FREE.value
        if profile is None:
            remaining = cache.refresh_allotment(tier)
            resets_on = (local_date(now, resolve_timezone(None, default_tz)) + timedelta(days=1)).isoformat()
        else:
            if rollover_due(profile, now, default_tz):
                remaining = cache.refresh_allotment(tier)
            else:
                remaining = profile.refreshes_remaining
            resets_on = next_reset_date(profile, now, default_tz)

    return RefreshStatus(
        user_id=user_id,
        membership_tier=tier,
        refreshes_remaining=remaining,
        daily_allotment=cache.refresh_allotment(tier),
        resets_on=resets_on,
    )


def set_membership_tier(
    engine: Engine,
    user_id: str,
    tier: MembershipTier | str,
    now: int,
    cache: SettingsCache,
    timezone: str | None = None,
) -> Profile:
    """Change a user's tier and refill to the new tier's allotment now.

    The daily window restarts at *now*, as if the day had just rolled over.
    """
    try:
        tier = MembershipTier(tier)
    except ValueError:
        raise ValidationError(f"Unknown membership tier {tier!r}.") from None

    with get_session(engine) as session:
        profile = session.get(Profile, user_id)
        if profile is None:
            profile = Profile(
                user_id=user_id,
                membership_tier=tier.value,
                refreshes_remaining=cache.refresh_allotment(tier),
                refresh_reset_at=now,
                timezone=timezone,
            )
            session.add(profile)
        else:
            profile.membership_tier = tier.value
            profile.refreshes_remaining = cache.refresh_allotment(tier)
            profile.refresh_reset_at = now
            if timezone is not None:
                profile.timezone = timezone
        session.flush()
        session.expunge(profile)

    logger.info("Membership tier for %s set to %s", user_id, tier.value)
    return profile


def import_profile(engine: Engine, raw: dict, now: int, cache: SettingsCache) -> Profile:
    """Upsert a profile from a legacy user record (``refreshResetTime`` etc.)."""
    fields = normalize_profile(raw, now)
    if fields["refreshes_remaining"] is None:
        fields["refreshes_remaining"] = cache.refresh_allotment(fields["membership_tier"])

    with get_session(engine) as session:
        profile = session.get(Profile, fields["user_id"])
        if profile is None:
            profile = Profile(**fields)
            session.add(profile)
        else:
            for key, value in fields.items():
                setattr(profile, key, value)
        session.flush()
        session.expunge(profile)
    return profile
