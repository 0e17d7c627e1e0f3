"""
totemic.database.seed — Default Settings Seeder
=================================================

Baseline tuning settings seeded on first startup.

Idempotent — only inserts keys that don't already exist.  Values changed
later by an operator are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from totemic.constants import DEFAULT_REFRESH_ALLOTMENTS, MembershipTier, allotment_setting_key
from totemic.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    allotment_setting_key(MembershipTier.FREE): (
        DEFAULT_REFRESH_ALLOTMENTS[MembershipTier.FREE], "refresh",
        "Daily refreshes for free members",
    ),
    allotment_setting_key(MembershipTier.PREMIUM): (
        DEFAULT_REFRESH_ALLOTMENTS[MembershipTier.PREMIUM], "refresh",
        "Daily refreshes for premium members",
    ),
    allotment_setting_key(MembershipTier.ADMIN): (
        DEFAULT_REFRESH_ALLOTMENTS[MembershipTier.ADMIN], "refresh",
        "Daily refreshes for admins",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> int:
    """Insert default settings that don't yet exist; return how many were added."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
    return inserted
