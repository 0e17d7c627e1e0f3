"""
totemic.engine.cache — In-Memory Settings Cache
================================================

Tuning values from the ``settings`` table are cached in memory so the hot
path (every refresh) does not re-read them.  Call :meth:`SettingsCache.reload`
after an operator edits a setting.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from totemic.constants import DEFAULT_REFRESH_ALLOTMENTS, MembershipTier, allotment_setting_key
from totemic.database.models import Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class SettingsCache:
    """Thread-safe in-memory copy of the ``settings`` table.

    Usage:
        cache = SettingsCache(engine)
        cache.load_all()

        allotment = cache.refresh_allotment("premium")
    """

    def __init__(self, engine: Engine | None = None, initial: dict[str, Any] | None = None) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        # key → parsed JSON value
        self._settings: dict[str, Any] = dict(initial or {})

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load every setting from the DB. Call on startup."""
        if self._engine is None:
            return
        with Session(self._engine) as session:
            rows = session.scalars(select(Setting)).all()
            parsed: dict[str, Any] = {}
            for row in rows:
                try:
                    parsed[row.key] = json.loads(row.value_json)
                except (json.JSONDecodeError, TypeError):
                    parsed[row.key] = row.value_json

        with self._lock:
            self._settings = parsed
        logger.info("SettingsCache loaded: %d settings", len(parsed))

    def reload(self) -> None:
        self.load_all()

    # -------------------------------------------------------------------
    # Typed accessors (thread-safe)
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the parsed JSON value for *key*, or *default*."""
        with self._lock:
            return self._settings.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return float(val)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        val = self.get_setting(key)
        if val is None:
            return default
        return bool(val)

    def refresh_allotment(self, tier: MembershipTier | str) -> int:
        """Daily refresh allotment for *tier*; unknown tiers get the free allotment."""
        try:
            tier = MembershipTier(tier)
        except ValueError:
            logger.warning("Unknown membership tier %r — using free allotment", tier)
            tier = MembershipTier.FREE
        allotment = self.get_int(allotment_setting_key(tier), DEFAULT_REFRESH_ALLOTMENTS[tier])
        return max(allotment, 0)
